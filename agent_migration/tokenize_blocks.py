"""Stage 1: Block tokenization of a monolithic agent prompt.

Splits the source text into an ordered list of typed blocks that together
cover every character of the input exactly once:

  - frontmatter        the leading ``---`` fenced YAML region
  - directive          one infrastructure line (import reference, template
                       include, known boilerplate closing line)
  - delimited_section  ``<name>`` ... ``</name>`` region (or a one-line
                       ``<name>text</name>``), for configured section names
                       only
  - plain_text         everything else, one paragraph per block

Design principles:
  - NEVER alter the text: ``"".join(b.raw_text for b in blocks) == text``
  - Blank lines after a block belong to that block
  - Tag lines with other names (``<details>``, ``<b>...</b>``) are prose
  - Same-name nesting is not supported: the first ``</name>`` closes the
    section
  - An unterminated section degrades to plain text up to end-of-document and
    is reported as an ``UnterminatedSection`` warning, never dropped
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from agent_migration.patterns import MigrationPatterns


# ─── Structural patterns ────────────────────────────────────────────────────

FRONTMATTER_FENCE = "---"

# A delimiter line holds nothing but the tag.
OPEN_TAG_RE = re.compile(r"^\s*<([a-z][a-z0-9_-]*)>\s*$")

# One-line section: <role>You are an X.</role>. The body holds no close tag
# of its own, so <b>Do</b> this and <b>that</b> is not a section.
INLINE_SECTION_RE = re.compile(r"^(\s*<([a-z][a-z0-9_-]*)>)((?:(?!</\2>).)*)(</\2>)\s*$")

# Warning codes
UNTERMINATED_SECTION = "UnterminatedSection"
UNTERMINATED_FRONTMATTER = "UnterminatedFrontmatter"


class BlockKind(str, Enum):
    FRONTMATTER = "frontmatter"
    DIRECTIVE = "directive"
    DELIMITED_SECTION = "delimited_section"
    PLAIN_TEXT = "plain_text"


# ─── Data classes ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Block:
    """A contiguous span of the source document."""
    order: int                    # Position in source, sort key for reassembly
    kind: BlockKind
    raw_text: str                 # Verbatim source text (incl. absorbed blank lines)
    start: int                    # Character offset in source (inclusive)
    end: int                      # Character offset in source (exclusive)
    marker: str | None = None     # Delimiter name for delimited sections
    body_start: int = 0           # Content span inside raw_text (excludes delimiter lines)
    body_end: int | None = None
    unterminated_marker: str | None = None  # Set on degraded sections
    clean_text: str | None = None           # Set by the stripper

    @property
    def body(self) -> str:
        end = len(self.raw_text) if self.body_end is None else self.body_end
        return self.raw_text[self.body_start:end]

    @property
    def is_blank(self) -> bool:
        return not self.raw_text.strip()


@dataclass(frozen=True)
class MigrationWarning:
    """A recoverable condition surfaced to the operator."""
    code: str
    message: str
    block_order: int | None = None


@dataclass
class TokenizeResult:
    blocks: list[Block]
    warnings: list[MigrationWarning] = field(default_factory=list)


# ─── Tokenizer ───────────────────────────────────────────────────────────────

def _content(line: str) -> str:
    """Line text without its line terminator."""
    return line.rstrip("\r\n")


def _close_tag_re(name: str) -> re.Pattern:
    return re.compile(rf"^\s*</{re.escape(name)}>\s*$")


def is_delimiter_line(line: str, patterns: MigrationPatterns) -> bool:
    """True if the line opens a section or is a one-line section.

    Only configured section names count. Any other tag line is prose.
    """
    content = _content(line)
    m = OPEN_TAG_RE.match(content)
    if m:
        return patterns.is_section_name(m.group(1))
    m = INLINE_SECTION_RE.match(content)
    return bool(m) and patterns.is_section_name(m.group(2))


def tokenize_document(text: str, patterns: MigrationPatterns) -> TokenizeResult:
    """Split ``text`` into blocks covering the whole document."""
    lines = text.splitlines(keepends=True)
    n = len(lines)
    offsets = [0]
    for line in lines:
        offsets.append(offsets[-1] + len(line))

    blocks: list[Block] = []
    warnings: list[MigrationWarning] = []

    def absorb_blank(j: int) -> int:
        while j < n and not lines[j].strip():
            j += 1
        return j

    def emit(kind: BlockKind, i0: int, i1: int, marker: str | None = None,
             body: tuple[int, int] | None = None, unterminated: str | None = None) -> Block:
        raw = text[offsets[i0]:offsets[i1]]
        body_start, body_end = body if body else (0, len(raw))
        block = Block(
            order=len(blocks),
            kind=kind,
            raw_text=raw,
            start=offsets[i0],
            end=offsets[i1],
            marker=marker,
            body_start=body_start,
            body_end=body_end,
            unterminated_marker=unterminated,
        )
        blocks.append(block)
        return block

    i = 0

    # Frontmatter must open on the very first line.
    if n and _content(lines[0]).strip() == FRONTMATTER_FENCE:
        close = next(
            (k for k in range(1, n) if _content(lines[k]).strip() == FRONTMATTER_FENCE),
            None,
        )
        if close is None:
            warnings.append(MigrationWarning(
                UNTERMINATED_FRONTMATTER,
                "Frontmatter fence on line 1 is never closed; treated as plain text",
                0,
            ))
        else:
            end = absorb_blank(close + 1)
            emit(
                BlockKind.FRONTMATTER, 0, end,
                body=(len(lines[0]), offsets[close] - offsets[0]),
            )
            i = end

    while i < n:
        content = _content(lines[i])

        if not content.strip():
            # Only reachable for blank lines at the start of the document.
            end = absorb_blank(i)
            emit(BlockKind.PLAIN_TEXT, i, end)
            i = end
            continue

        m = INLINE_SECTION_RE.match(content)
        if m and patterns.is_section_name(m.group(2)):
            end = absorb_blank(i + 1)
            emit(
                BlockKind.DELIMITED_SECTION, i, end,
                marker=m.group(2),
                body=(len(m.group(1)), m.start(4)),
            )
            i = end
            continue

        m = OPEN_TAG_RE.match(content)
        if m and patterns.is_section_name(m.group(1)):
            name = m.group(1)
            close_rx = _close_tag_re(name)
            close = next(
                (k for k in range(i + 1, n) if close_rx.match(_content(lines[k]))),
                None,
            )
            if close is None:
                block = emit(BlockKind.PLAIN_TEXT, i, n, unterminated=name)
                warnings.append(MigrationWarning(
                    UNTERMINATED_SECTION,
                    f"<{name}> opened on line {i + 1} is never closed; "
                    f"kept as plain text to end of document",
                    block.order,
                ))
                break
            end = absorb_blank(close + 1)
            emit(
                BlockKind.DELIMITED_SECTION, i, end,
                marker=name,
                body=(len(lines[i]), offsets[close] - offsets[i]),
            )
            i = end
            continue

        if patterns.match_directive(content):
            end = absorb_blank(i + 1)
            emit(BlockKind.DIRECTIVE, i, end)
            i = end
            continue

        # Paragraph: runs to the next blank line or section opening.
        # Directive lines after the first line stay inside the paragraph.
        j = i + 1
        while j < n:
            if not lines[j].strip() or is_delimiter_line(lines[j], patterns):
                break
            j += 1
        end = absorb_blank(j)
        emit(BlockKind.PLAIN_TEXT, i, end)
        i = end

    return TokenizeResult(blocks=blocks, warnings=warnings)
