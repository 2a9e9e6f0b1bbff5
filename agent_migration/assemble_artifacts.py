"""Stage 4: Assemble the five output artifacts from classified blocks.

Each artifact is a pure view over (blocks, classification): the cleaned text
of its blocks in source order, surrounding blank lines trimmed, joined by one
blank line. A category with no content still gets a file holding a short
placeholder, never an empty file.
"""

from __future__ import annotations

from dataclasses import dataclass

from agent_migration.classify_blocks import ARTIFACT_CATEGORIES, Category, Classification
from agent_migration.patterns import MigrationPatterns
from agent_migration.tokenize_blocks import Block

SEPARATOR = "\n\n"

ARTIFACT_STEMS = {
    Category.INTRO: "intro",
    Category.WORKFLOW: "workflow",
    Category.EXAMPLES: "examples",
    Category.CRITICAL_REQUIREMENTS: "critical-requirements",
    Category.CRITICAL_REMINDERS: "critical-reminders",
}

CATEGORY_LABELS = {
    Category.INTRO: "intro",
    Category.WORKFLOW: "workflow",
    Category.EXAMPLES: "example",
    Category.CRITICAL_REQUIREMENTS: "critical requirements",
    Category.CRITICAL_REMINDERS: "critical reminders",
}


@dataclass(frozen=True)
class Artifact:
    """One output document."""
    category: Category
    filename: str
    block_orders: tuple[int, ...]   # Blocks that contributed text
    content: str
    is_placeholder: bool


def artifact_filename(category: Category, extension: str = "md") -> str:
    return f"{ARTIFACT_STEMS[category]}.{extension}"


def trim_blank_lines(text: str) -> str:
    """Drop leading blank lines and trailing whitespace, keep indentation."""
    lines = text.splitlines(keepends=True)
    while lines and not lines[0].strip():
        lines.pop(0)
    return "".join(lines).rstrip()


def block_piece(block: Block) -> str:
    """The text a block contributes to its artifact ('' if nothing)."""
    source = block.clean_text if block.clean_text is not None else block.body
    return trim_blank_lines(source)


def assemble_artifact(
    category: Category,
    blocks: list[Block],
    classification: Classification,
    patterns: MigrationPatterns,
    extension: str = "md",
) -> Artifact:
    pieces = []
    orders = []
    for block in classification.blocks_in(blocks, category):
        piece = block_piece(block)
        if piece:
            pieces.append(piece)
            orders.append(block.order)

    if pieces:
        content = SEPARATOR.join(pieces) + "\n"
        placeholder = False
    else:
        content = patterns.placeholder_for(category.value, CATEGORY_LABELS[category]) + "\n"
        placeholder = True

    return Artifact(
        category=category,
        filename=artifact_filename(category, extension),
        block_orders=tuple(orders),
        content=content,
        is_placeholder=placeholder,
    )


def assemble_artifacts(
    blocks: list[Block],
    classification: Classification,
    patterns: MigrationPatterns,
    extension: str = "md",
) -> dict[Category, Artifact]:
    """Build all five artifacts, keyed by category in output order."""
    return {
        category: assemble_artifact(category, blocks, classification, patterns, extension)
        for category in ARTIFACT_CATEGORIES
    }
