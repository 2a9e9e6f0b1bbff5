"""Static structural patterns shared by the tokenizer, classifier and stripper.

The patterns file is the explicit reference corpus of the migration: marker
vocabulary, directive regexes, known boilerplate and the positional intro
limit. It is loaded once and passed into every stage; nothing reads it
implicitly.

Usage:
    patterns = load_patterns()                       # shipped defaults
    patterns = load_patterns("my_patterns.yaml")     # override
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from agent_migration.errors import PatternConfigError

DEFAULT_PATTERNS_PATH = Path(__file__).resolve().parent / "data" / "migration_patterns.yaml"

BOILERPLATE_RULE = "boilerplate_closing"

REQUIRED_MARKER_KEYS = (
    "critical_reminders",
    "critical_requirements",
    "examples",
    "preloaded_content",
    "intro",
)


@dataclass(frozen=True)
class MigrationPatterns:
    """Read-only marker vocabulary and line patterns."""
    reminders_markers: frozenset[str]
    requirements_markers: frozenset[str]
    examples_markers: frozenset[str]
    preloaded_marker: str
    intro_marker: str
    directives: tuple[tuple[str, re.Pattern], ...]
    boilerplate: tuple[str, ...]
    intro_block_limit: int = 3
    verification_tolerance: int = 0
    placeholders: dict[str, str] = field(default_factory=dict)
    structural_sections: frozenset[str] = frozenset()

    def recognized_markers(self) -> frozenset[str]:
        """Marker names that have a classification rule of their own."""
        return (
            self.reminders_markers
            | self.requirements_markers
            | self.examples_markers
            | {self.preloaded_marker, self.intro_marker}
        )

    def is_section_name(self, name: str | None) -> bool:
        """True if <name> lines delimit a prompt section rather than prose markup."""
        return name in self.structural_sections or name in self.recognized_markers()

    def match_directive(self, line: str) -> str | None:
        """Return the rule name if the whole line is infrastructure, else None."""
        stripped = line.strip()
        if not stripped:
            return None
        if stripped in self.boilerplate:
            return BOILERPLATE_RULE
        for name, rx in self.directives:
            if rx.match(stripped):
                return name
        return None

    def is_boilerplate(self, text: str) -> bool:
        return text.strip() in self.boilerplate

    def boilerplate_suffix(self, text: str) -> str | None:
        """Return the boilerplate string ``text`` ends with (ignoring trailing whitespace)."""
        tail = text.rstrip()
        # Longest first so a bold variant wins over its plain substring.
        for bp in sorted(self.boilerplate, key=len, reverse=True):
            if tail.endswith(bp):
                return bp
        return None

    def placeholder_for(self, category: str, label: str) -> str:
        if category in self.placeholders:
            return self.placeholders[category]
        template = self.placeholders.get("default", "_No {label} content found._")
        return template.format(label=label)


def _as_name_set(value, key: str) -> frozenset[str]:
    if isinstance(value, str):
        return frozenset([value])
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return frozenset(value)
    raise PatternConfigError(f"markers.{key} must be a name or a list of names")


def parse_patterns(data: dict) -> MigrationPatterns:
    """Build MigrationPatterns from a parsed YAML mapping."""
    if not isinstance(data, dict):
        raise PatternConfigError("patterns file must contain a mapping")

    markers = data.get("markers") or {}
    missing = [k for k in REQUIRED_MARKER_KEYS if k not in markers]
    if missing:
        raise PatternConfigError(f"patterns file missing markers: {', '.join(missing)}")

    for key in ("preloaded_content", "intro"):
        if not isinstance(markers[key], str):
            raise PatternConfigError(f"markers.{key} must be a single name")

    directives = []
    for entry in data.get("directives") or []:
        name = entry.get("name")
        pattern = entry.get("pattern")
        if not name or not pattern:
            raise PatternConfigError(f"directive entry needs name and pattern: {entry!r}")
        try:
            directives.append((name, re.compile(pattern)))
        except re.error as e:
            raise PatternConfigError(f"directive '{name}' has an invalid pattern: {e}") from e

    boilerplate = data.get("boilerplate") or []
    if not all(isinstance(b, str) and b.strip() for b in boilerplate):
        raise PatternConfigError("boilerplate entries must be non-empty strings")

    structural = data.get("structural_sections") or []
    if not isinstance(structural, list) or not all(isinstance(s, str) and s for s in structural):
        raise PatternConfigError("structural_sections must be a list of names")
    structural = frozenset(structural)

    limit = data.get("intro_block_limit", 3)
    tolerance = data.get("verification_tolerance", 0)
    if not isinstance(limit, int) or limit < 0:
        raise PatternConfigError(f"intro_block_limit must be a non-negative integer, got {limit!r}")
    if not isinstance(tolerance, int) or tolerance < 0:
        raise PatternConfigError(f"verification_tolerance must be a non-negative integer, got {tolerance!r}")

    return MigrationPatterns(
        reminders_markers=_as_name_set(markers["critical_reminders"], "critical_reminders"),
        requirements_markers=_as_name_set(markers["critical_requirements"], "critical_requirements"),
        examples_markers=_as_name_set(markers["examples"], "examples"),
        preloaded_marker=markers["preloaded_content"],
        intro_marker=markers["intro"],
        directives=tuple(directives),
        boilerplate=tuple(b.strip() for b in boilerplate),
        intro_block_limit=limit,
        verification_tolerance=tolerance,
        placeholders=dict(data.get("placeholders") or {}),
        structural_sections=structural,
    )


def load_patterns(path: str | Path | None = None) -> MigrationPatterns:
    """Load a patterns YAML file (the shipped defaults when ``path`` is None)."""
    yaml_path = Path(path) if path else DEFAULT_PATTERNS_PATH
    try:
        with open(yaml_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise PatternConfigError(f"Cannot read patterns file {yaml_path}: {e}") from e
    except yaml.YAMLError as e:
        raise PatternConfigError(f"Invalid YAML in {yaml_path}: {e}") from e
    return parse_patterns(data)
