#!/usr/bin/env python3
"""
Tests for the migration patterns file (agent_migration/patterns.py)

Run: pytest tests/test_patterns.py -v
"""

import pytest
import yaml

from agent_migration.errors import PatternConfigError
from agent_migration.patterns import BOILERPLATE_RULE, load_patterns, parse_patterns

PATTERNS = load_patterns()


def minimal(**overrides):
    data = {
        "markers": {
            "critical_reminders": ["critical_reminders"],
            "critical_requirements": "critical_requirements",
            "examples": ["examples"],
            "preloaded_content": "preloaded_content",
            "intro": "role",
        },
    }
    data.update(overrides)
    return data


class TestShippedPatterns:
    def test_markers(self):
        assert "example_output" in PATTERNS.examples_markers
        assert PATTERNS.intro_marker == "role"
        assert PATTERNS.intro_block_limit == 3

    @pytest.mark.parametrize("line,rule", [
        ("@.claude/shared/core-principles.md", "markdown_import"),
        ("  @docs/setup.md  ", "markdown_import"),
        ("{% include 'partials/footer.md' %}", "template_include"),
        ("{%- render \"x\" -%}", "template_include"),
        ("<!-- import: shared/a.md -->", "include_comment"),
    ])
    def test_directive_lines(self, line, rule):
        assert PATTERNS.match_directive(line) == rule

    @pytest.mark.parametrize("line", [
        "",
        "@notes.txt",
        "Email me @ home.md today",
        "{% if x %}",
        "<!-- a plain comment -->",
    ])
    def test_content_lines(self, line):
        assert PATTERNS.match_directive(line) is None

    def test_boilerplate_line(self):
        line = PATTERNS.boilerplate[0]
        assert PATTERNS.match_directive(line) == BOILERPLATE_RULE
        assert PATTERNS.is_boilerplate(line + "\n\n")

    def test_boilerplate_suffix_prefers_longest(self):
        bold = "**DISPLAY ALL 5 CORE PRINCIPLES AT THE START OF EVERY RESPONSE TO MAINTAIN INSTRUCTION CONTINUITY.**"
        assert PATTERNS.boilerplate_suffix(f"Done. {bold}\n") == bold

    def test_section_names(self):
        assert PATTERNS.is_section_name("workflow")
        assert PATTERNS.is_section_name("critical_reminders")
        assert not PATTERNS.is_section_name("details")
        assert not PATTERNS.is_section_name(None)

    def test_placeholders(self):
        assert PATTERNS.placeholder_for("examples", "example").startswith("## Examples")
        assert PATTERNS.placeholder_for("intro", "intro") == "_No intro content found._"


class TestParsePatterns:
    def test_minimal(self):
        patterns = parse_patterns(minimal())
        assert patterns.requirements_markers == frozenset({"critical_requirements"})
        assert patterns.directives == ()
        assert patterns.structural_sections == frozenset()
        assert patterns.is_section_name("role")

    def test_structural_sections(self):
        patterns = parse_patterns(minimal(structural_sections=["workflow", "steps"]))
        assert patterns.is_section_name("steps")
        assert not patterns.is_section_name("details")

    @pytest.mark.parametrize("value", ["workflow", ["workflow", ""], [1]])
    def test_bad_structural_sections(self, value):
        with pytest.raises(PatternConfigError, match="structural_sections"):
            parse_patterns(minimal(structural_sections=value))

    def test_missing_marker(self):
        data = minimal()
        del data["markers"]["intro"]
        with pytest.raises(PatternConfigError, match="intro"):
            parse_patterns(data)

    def test_intro_must_be_single_name(self):
        data = minimal()
        data["markers"]["intro"] = ["role", "persona"]
        with pytest.raises(PatternConfigError):
            parse_patterns(data)

    def test_bad_regex(self):
        with pytest.raises(PatternConfigError, match="broken"):
            parse_patterns(minimal(directives=[{"name": "broken", "pattern": "("}]))

    def test_negative_limit(self):
        with pytest.raises(PatternConfigError):
            parse_patterns(minimal(intro_block_limit=-1))

    def test_not_a_mapping(self):
        with pytest.raises(PatternConfigError):
            parse_patterns(["markers"])

    def test_load_custom_file(self, tmp_path):
        path = tmp_path / "patterns.yaml"
        path.write_text(yaml.dump(minimal(intro_block_limit=5)), encoding="utf-8")
        assert load_patterns(path).intro_block_limit == 5

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(PatternConfigError):
            load_patterns(tmp_path / "nope.yaml")
