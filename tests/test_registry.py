#!/usr/bin/env python3
"""
Tests for the configuration registry (agent_migration/registry.py)

Run: pytest tests/test_registry.py -v
"""

from unittest.mock import patch

import pytest
import yaml

from agent_migration.errors import RegistryConflict, RegistryError
from agent_migration.registry import (
    REGISTRY_VERSION,
    build_registry_entry,
    check_conflict,
    load_registry,
    write_registry,
)

RECORD = {
    "agent_id": "api-reviewer",
    "primary_prompt_set": "reviewer",
    "ending_prompt_set": "reviewer",
    "output_format": "output-format-reviewer",
    "skills_precompiled": [
        {"id": "backend/api", "path": "skills/backend/api/SKILL.md",
         "display_name": "API", "usage_phrase": "when implementing or changing API routes"},
    ],
    "skills_dynamic": [],
}


class TestLoadRegistry:
    def test_missing_file(self, tmp_path):
        assert load_registry(tmp_path / "agent_configs.yaml") is None

    def test_empty_file(self, tmp_path):
        path = tmp_path / "agent_configs.yaml"
        path.write_text("", encoding="utf-8")
        assert load_registry(path) is None

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "agent_configs.yaml"
        path.write_text("agents: [\n", encoding="utf-8")
        with pytest.raises(RegistryError):
            load_registry(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "agent_configs.yaml"
        path.write_text("- a\n", encoding="utf-8")
        with pytest.raises(RegistryError):
            load_registry(path)


class TestWriteRegistry:
    def test_creates_new_registry(self, tmp_path):
        path = tmp_path / "agent_configs.yaml"
        write_registry(None, path, build_registry_entry(RECORD))
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert data["registry_version"] == REGISTRY_VERSION
        assert data["agents"]["api-reviewer"] == RECORD

    def test_adds_to_existing(self, tmp_path):
        path = tmp_path / "agent_configs.yaml"
        data = write_registry(None, path, build_registry_entry(RECORD))
        other = dict(RECORD, agent_id="builder")
        write_registry(data, path, build_registry_entry(other))
        loaded = load_registry(path)
        assert list(loaded["agents"]) == ["api-reviewer", "builder"]

    def test_empty_skill_lists_kept(self, tmp_path):
        path = tmp_path / "agent_configs.yaml"
        write_registry(None, path, build_registry_entry(RECORD))
        assert load_registry(path)["agents"]["api-reviewer"]["skills_dynamic"] == []

    def test_failed_write_leaves_file_untouched(self, tmp_path):
        path = tmp_path / "agent_configs.yaml"
        data = write_registry(None, path, build_registry_entry(RECORD))
        before = path.read_text(encoding="utf-8")
        with patch("agent_migration.registry.yaml.dump", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                write_registry(data, path, build_registry_entry(dict(RECORD, agent_id="other")))
        assert path.read_text(encoding="utf-8") == before
        assert list(tmp_path.glob("*.tmp")) == []


class TestConflict:
    def test_conflict_raises(self, tmp_path):
        registry = {"agents": {"api-reviewer": RECORD}}
        with pytest.raises(RegistryConflict) as exc:
            check_conflict(registry, "api-reviewer", tmp_path / "r.yaml")
        assert exc.value.agent_id == "api-reviewer"

    def test_force_allows_replacement(self, tmp_path):
        check_conflict({"agents": {"api-reviewer": RECORD}}, "api-reviewer", tmp_path / "r.yaml", force=True)

    def test_no_registry(self, tmp_path):
        check_conflict(None, "api-reviewer", tmp_path / "r.yaml")
