"""Stage 3: Remove infrastructure from retained blocks.

A block can be kept as content and still carry infrastructure: the delimiter
lines around a section, an import reference on the third line of a
paragraph, compiler boilerplate glued to the end of the last sentence.

Rules:
  - Remove delimiter lines of configured sections (rule ``section_delimiter``).
    Tag lines with any other name are content.
  - Remove whole lines that match a known directive pattern
  - Remove a known boilerplate string when the block ends with it
  - Keep everything else verbatim. A line that looks like a directive but
    uses an unknown name is content.

Every removed span is returned as a ``Removal`` so verification can account
for it and the discard manifest can list it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from agent_migration.classify_blocks import Category, Classification
from agent_migration.patterns import BOILERPLATE_RULE, MigrationPatterns
from agent_migration.tokenize_blocks import Block, BlockKind

DELIMITER_RULE = "section_delimiter"


@dataclass(frozen=True)
class Removal:
    """A span removed from a retained block."""
    block_order: int
    rule: str
    text: str


def strip_block(block: Block, patterns: MigrationPatterns) -> tuple[Block, list[Removal]]:
    """Return a copy of ``block`` with ``clean_text`` set, and what was removed."""
    removals: list[Removal] = []

    content = block.body
    if block.kind is BlockKind.DELIMITED_SECTION and not patterns.is_section_name(block.marker):
        # Not a section delimiter: the tag lines are content.
        content = block.raw_text
    elif block.kind is BlockKind.DELIMITED_SECTION:
        body_end = len(block.raw_text) if block.body_end is None else block.body_end
        head = block.raw_text[:block.body_start]
        tail = block.raw_text[body_end:]
        if head:
            removals.append(Removal(block.order, DELIMITER_RULE, head))
        if tail:
            removals.append(Removal(block.order, DELIMITER_RULE, tail))

    kept = []
    for line in content.splitlines(keepends=True):
        rule = patterns.match_directive(line)
        if rule:
            removals.append(Removal(block.order, rule, line))
        else:
            kept.append(line)
    text = "".join(kept)

    suffix = patterns.boilerplate_suffix(text)
    if suffix:
        cut = len(text.rstrip()) - len(suffix)
        removals.append(Removal(block.order, BOILERPLATE_RULE, text[cut:]))
        text = text[:cut]

    return replace(block, clean_text=text), removals


def strip_blocks(
    blocks: list[Block],
    classification: Classification,
    patterns: MigrationPatterns,
) -> tuple[list[Block], list[Removal]]:
    """Strip every block assigned to an artifact category.

    Discarded blocks are returned unchanged with ``clean_text`` equal to
    their raw text; they are accounted for as whole blocks.
    """
    cleaned: list[Block] = []
    removals: list[Removal] = []
    for block in blocks:
        if classification.category_of(block) is Category.DISCARD:
            cleaned.append(replace(block, clean_text=block.raw_text))
            continue
        new_block, block_removals = strip_block(block, patterns)
        cleaned.append(new_block)
        removals.extend(block_removals)
    return cleaned, removals
