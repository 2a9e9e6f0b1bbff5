"""Stage 5: Verify written artifacts against the source document.

Content-preservation check: after the artifacts are on disk, re-read them and
account for every non-whitespace character of the source:

    nonws(source) == Σ nonws(artifact files, placeholders excluded)
                   + Σ nonws(discarded blocks)
                   + Σ nonws(stripped lines)

Whitespace is excluded because the assembler normalizes separators. A
shortfall above the configured tolerance raises ContentLossSuspected naming
the blocks whose text is missing from their artifact. Nothing is corrected
automatically.

Also provides ``validate_agent_dir`` for checking an already-migrated agent
directory (required files, leftover infrastructure, skill paths).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from agent_migration.assemble_artifacts import artifact_filename, block_piece, CATEGORY_LABELS
from agent_migration.classify_blocks import (
    ARTIFACT_CATEGORIES,
    Category,
    Classification,
)
from agent_migration.errors import ContentLossSuspected
from agent_migration.patterns import MigrationPatterns
from agent_migration.strip_infrastructure import Removal
from agent_migration.tokenize_blocks import Block, MigrationWarning

CONTENT_SURPLUS = "ContentSurplus"
CONTENT_MISMATCH = "ContentMismatch"

SUSPECT_MARKER = "SUSPECT"

REQUIRED_FILES = (Category.INTRO, Category.WORKFLOW)
OPTIONAL_FILES = (Category.EXAMPLES, Category.CRITICAL_REQUIREMENTS, Category.CRITICAL_REMINDERS)

TAG_LINE_RE = re.compile(r"^\s*</?([a-z][a-z0-9_-]*)>\s*$")


def nonws_len(text: str) -> int:
    """Count non-whitespace characters."""
    return sum(1 for c in text if not c.isspace())


# ─── Partition check ────────────────────────────────────────────────────────

def check_block_partition(blocks: list[Block], text: str) -> None:
    """Blocks must tile the source with no gaps or overlaps."""
    pos = 0
    for block in sorted(blocks, key=lambda b: b.order):
        if block.start != pos:
            gap = text[min(pos, block.start):max(pos, block.start)]
            raise ContentLossSuspected(
                nonws_len(gap), [(block.order, pos, block.start)],
                detail="block boundaries leave a gap or overlap",
            )
        if text[block.start:block.end] != block.raw_text:
            raise ContentLossSuspected(
                0, [(block.order, block.start, block.end)],
                detail="block text differs from source span",
            )
        pos = block.end
    if pos != len(text):
        raise ContentLossSuspected(
            nonws_len(text[pos:]), [(-1, pos, len(text))],
            detail="trailing source text not covered by any block",
        )


# ─── Artifact verification ──────────────────────────────────────────────────

@dataclass
class VerificationReport:
    source_chars: int
    artifact_chars: dict[str, int]
    discarded_chars: int
    stripped_chars: int
    warnings: list[MigrationWarning] = field(default_factory=list)

    @property
    def accounted_chars(self) -> int:
        return sum(self.artifact_chars.values()) + self.discarded_chars + self.stripped_chars

    @property
    def shortfall(self) -> int:
        return self.source_chars - self.accounted_chars


def verify_artifacts(
    artifact_dir: str | Path,
    source_text: str,
    blocks: list[Block],
    classification: Classification,
    removals: list[Removal],
    patterns: MigrationPatterns,
    extension: str = "md",
) -> VerificationReport:
    """Re-read the artifacts in ``artifact_dir`` and check the accounting.

    ``blocks`` are the stripped blocks (``clean_text`` set).
    """
    artifact_dir = Path(artifact_dir)
    artifact_chars: dict[str, int] = {}
    missing: list[tuple[int, int, int]] = []
    problems: list[str] = []
    warnings: list[MigrationWarning] = []

    for category in ARTIFACT_CATEGORIES:
        filename = artifact_filename(category, extension)
        path = artifact_dir / filename
        if path.exists():
            content = path.read_text(encoding="utf-8")
        else:
            content = ""
            problems.append(f"{filename} is missing")
        if path.exists() and not content.strip():
            problems.append(f"{filename} is empty")

        contributing = [b for b in classification.blocks_in(blocks, category) if block_piece(b)]
        placeholder = patterns.placeholder_for(category.value, CATEGORY_LABELS[category])
        if not contributing and content.strip() == placeholder.strip():
            artifact_chars[filename] = 0
        else:
            artifact_chars[filename] = nonws_len(content)

        for block in contributing:
            if block_piece(block) not in content:
                missing.append((block.order, block.start, block.end))

    discarded = sum(
        nonws_len(b.raw_text)
        for b in blocks
        if classification.category_of(b) is Category.DISCARD
    )
    stripped = sum(nonws_len(r.text) for r in removals)

    report = VerificationReport(
        source_chars=nonws_len(source_text),
        artifact_chars=artifact_chars,
        discarded_chars=discarded,
        stripped_chars=stripped,
        warnings=warnings,
    )

    shortfall = report.shortfall
    if shortfall > patterns.verification_tolerance or problems:
        raise ContentLossSuspected(max(shortfall, 0), missing, detail="; ".join(problems))

    if shortfall < 0:
        warnings.append(MigrationWarning(
            CONTENT_SURPLUS,
            f"Artifacts hold {-shortfall} more non-whitespace characters than the source accounts for",
        ))
    for order, start, end in missing:
        warnings.append(MigrationWarning(
            CONTENT_MISMATCH,
            f"Text of block {order} [{start}:{end}] not found verbatim in its artifact",
            order,
        ))

    return report


# ─── Migrated agent validation ──────────────────────────────────────────────

@dataclass(frozen=True)
class ValidationIssue:
    """One finding, located in an artifact file when it concerns one."""
    message: str
    filename: str | None = None
    line: int | None = None

    def __str__(self) -> str:
        if self.filename is None:
            return self.message
        where = self.filename if self.line is None else f"{self.filename}:{self.line}"
        return f"{where}: {self.message}"


@dataclass
class ValidationResult:
    """Errors and warnings found in one migrated agent directory."""
    agent_id: str
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    def error(self, message: str, filename: str | None = None, line: int | None = None):
        self.errors.append(ValidationIssue(message, filename, line))

    def warn(self, message: str, filename: str | None = None, line: int | None = None):
        self.warnings.append(ValidationIssue(message, filename, line))

    @property
    def ok(self) -> bool:
        return len(self.errors) == 0

    def files_with_errors(self) -> list[str]:
        return sorted({e.filename for e in self.errors if e.filename})

    def summary(self) -> str:
        lines = [f"Agent: {self.agent_id}"]
        if self.errors:
            lines.append(f"ERRORS ({len(self.errors)}):")
            for e in self.errors:
                lines.append(f"  ✗ {e}")
        if self.warnings:
            lines.append(f"WARNINGS ({len(self.warnings)}):")
            for w in self.warnings:
                lines.append(f"  ⚠ {w}")
        if not self.errors and not self.warnings:
            lines.append("✓ All checks passed")
        elif not self.errors:
            lines.append(f"✓ No errors ({len(self.warnings)} warnings)")
        return "\n".join(lines)


def _check_artifact_text(filename: str, text: str, category: Category,
                         patterns: MigrationPatterns, result: ValidationResult):
    if not text.strip():
        result.error("artifact is empty", filename)
        return

    placeholder = patterns.placeholder_for(category.value, CATEGORY_LABELS[category])
    if text.strip() == placeholder.strip():
        result.warn("holds only the placeholder", filename)
        return

    for lineno, line in enumerate(text.splitlines(), 1):
        rule = patterns.match_directive(line)
        if rule:
            result.error(f"leftover infrastructure line ({rule})", filename, lineno)
            continue
        m = TAG_LINE_RE.match(line)
        if m and patterns.is_section_name(m.group(1)):
            result.warn(f"leftover <{m.group(1)}> delimiter", filename, lineno)


def validate_skill_refs(record: dict, skills_root: Path | None, result: ValidationResult):
    """Check the skill lists of a registry record."""
    for skill in record.get("skills_precompiled", []):
        path = skill.get("path")
        if not path:
            result.error(f"precompiled skill {skill.get('id')} has no path")
        elif skills_root is not None and not (skills_root / path).exists():
            result.error("skill file not found", path)

    for skill in record.get("skills_dynamic", []):
        if not skill.get("path"):
            result.warn(f"dynamic skill {skill.get('id')} has no path")
        if not skill.get("usage_phrase"):
            result.error(f"dynamic skill {skill.get('id')} has no usage phrase")


def validate_agent_dir(
    agent_dir: str | Path,
    patterns: MigrationPatterns,
    record: dict | None = None,
    skills_root: str | Path | None = None,
    extension: str = "md",
) -> ValidationResult:
    """Check a migrated agent directory for completeness and leftovers."""
    agent_dir = Path(agent_dir)
    agent_id = record.get("agent_id", agent_dir.name) if record else agent_dir.name
    result = ValidationResult(agent_id)

    if not agent_dir.is_dir():
        result.error(f"agent directory not found: {agent_dir}")
        return result

    if (agent_dir / SUSPECT_MARKER).exists():
        result.error("migration flagged as suspect", SUSPECT_MARKER)

    for category in REQUIRED_FILES + OPTIONAL_FILES:
        filename = artifact_filename(category, extension)
        path = agent_dir / filename
        if not path.exists():
            if category in REQUIRED_FILES:
                result.error("required artifact missing", filename)
            else:
                result.warn("optional artifact missing", filename)
            continue
        _check_artifact_text(filename, path.read_text(encoding="utf-8"), category, patterns, result)

    if record is not None:
        validate_skill_refs(record, Path(skills_root) if skills_root else None, result)

    return result
