"""Configuration registry: one YAML file mapping agent id -> record.

Layout::

    registry_version: "1.0"
    notes: ...
    agents:
      <agent-id>: {agent_id, primary_prompt_set, ..., skills_dynamic}

Writes are atomic (temp file in the same directory, then ``os.replace``).
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

import yaml

from agent_migration.errors import RegistryConflict, RegistryError

REGISTRY_VERSION = "1.0"
DEFAULT_REGISTRY_NAME = "agent_configs.yaml"

REGISTRY_NOTES = (
    "Configuration records of migrated agents.\n"
    "Generated by agent-migrate. Each agent's artifacts live in <dest-root>/<agent-id>/.\n"
)


def load_registry(registry_path: str | Path) -> dict | None:
    """Return the parsed registry, or None if the file does not exist yet."""
    registry_path = Path(registry_path)
    if not registry_path.exists():
        return None
    try:
        with open(registry_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RegistryError(f"Invalid YAML in registry {registry_path}: {e}") from e
    if data is None:
        return None
    if not isinstance(data, dict):
        raise RegistryError(f"Registry {registry_path} is not a mapping")
    return data


def registered_agents(registry_data: dict | None) -> dict:
    if not registry_data:
        return {}
    return registry_data.get("agents") or {}


def check_conflict(registry_data: dict | None, agent_id: str, registry_path: str | Path,
                   force: bool = False):
    """Raise RegistryConflict if ``agent_id`` is registered and not forced."""
    if agent_id in registered_agents(registry_data) and not force:
        raise RegistryConflict(agent_id, str(registry_path))


def build_registry_entry(record: dict) -> dict:
    """Registry entry for a validated record dict (empty skill lists kept)."""
    return {
        "agent_id": record["agent_id"],
        "primary_prompt_set": record["primary_prompt_set"],
        "ending_prompt_set": record["ending_prompt_set"],
        "output_format": record["output_format"],
        "skills_precompiled": [dict(s) for s in record["skills_precompiled"]],
        "skills_dynamic": [dict(s) for s in record["skills_dynamic"]],
    }


def write_registry(registry_data: dict | None, registry_path: str | Path, entry: dict) -> dict:
    """Atomically add or replace ``entry`` in the registry. Returns the new data."""
    registry_path = Path(registry_path)
    if registry_data is None:
        # First migration: create new registry
        registry_data = {
            "registry_version": REGISTRY_VERSION,
            "notes": REGISTRY_NOTES,
            "agents": {},
        }
    elif registry_data.get("agents") is None:
        registry_data["agents"] = {}
    registry_data["agents"][entry["agent_id"]] = entry

    registry_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(registry_path.parent), suffix=".yaml.tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.dump(registry_data, f, allow_unicode=True, default_flow_style=False,
                      sort_keys=False, width=120)
        os.replace(tmp_path, str(registry_path))
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass  # cleanup failure should not mask the original exception
        raise
    return registry_data
