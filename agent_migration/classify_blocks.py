"""Stage 2: Category classification of tokenized blocks.

Each block gets exactly one category from a closed set. Explicit structure
decides first (block kind, delimiter marker); only blocks no explicit rule
claims fall through to the positional intro fallback.

Rule priority (first match wins):
  1. frontmatter block                  -> discard
  2. directive block                    -> discard
  3. marker in reminders set            -> critical_reminders
  4. marker in requirements set         -> critical_requirements
  5. marker in examples set             -> examples
  6. marker == preloaded-content name   -> discard
  7. marker == role/intro name          -> intro
  9. text equals known boilerplate      -> discard
  8. positional fallback                -> intro | workflow

Rule 9 is evaluated ahead of the fallback because the fallback assigns every
block it sees.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from agent_migration.errors import AmbiguousClassification
from agent_migration.patterns import MigrationPatterns
from agent_migration.tokenize_blocks import Block, BlockKind


class Category(str, Enum):
    INTRO = "intro"
    WORKFLOW = "workflow"
    EXAMPLES = "examples"
    CRITICAL_REQUIREMENTS = "critical_requirements"
    CRITICAL_REMINDERS = "critical_reminders"
    DISCARD = "discard"


# Categories that produce an artifact, in output order.
ARTIFACT_CATEGORIES = (
    Category.INTRO,
    Category.WORKFLOW,
    Category.EXAMPLES,
    Category.CRITICAL_REQUIREMENTS,
    Category.CRITICAL_REMINDERS,
)

# Level 2+ markdown heading; a level 1 title may open an intro paragraph.
SUBHEADING_RE = re.compile(r"^#{2,6}\s", re.MULTILINE)


# ─── Rule table ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ClassificationContext:
    """Document-level facts the rules need, computed once per document."""
    patterns: MigrationPatterns
    content_index: dict[int, int]        # block order -> index among content blocks
    has_intro_marker: bool
    first_workflow_order: int | None


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    category: Category
    predicate: Callable[[Block, ClassificationContext], bool]
    explicit: bool = True    # Structural rule, takes part in the ambiguity check


RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        "frontmatter", Category.DISCARD,
        lambda b, ctx: b.kind is BlockKind.FRONTMATTER,
    ),
    ClassificationRule(
        "directive", Category.DISCARD,
        lambda b, ctx: b.kind is BlockKind.DIRECTIVE,
    ),
    ClassificationRule(
        "reminders_marker", Category.CRITICAL_REMINDERS,
        lambda b, ctx: b.kind is BlockKind.DELIMITED_SECTION
        and b.marker in ctx.patterns.reminders_markers,
    ),
    ClassificationRule(
        "requirements_marker", Category.CRITICAL_REQUIREMENTS,
        lambda b, ctx: b.kind is BlockKind.DELIMITED_SECTION
        and b.marker in ctx.patterns.requirements_markers,
    ),
    ClassificationRule(
        "examples_marker", Category.EXAMPLES,
        lambda b, ctx: b.kind is BlockKind.DELIMITED_SECTION
        and b.marker in ctx.patterns.examples_markers,
    ),
    ClassificationRule(
        "preloaded_content_marker", Category.DISCARD,
        lambda b, ctx: b.kind is BlockKind.DELIMITED_SECTION
        and b.marker == ctx.patterns.preloaded_marker,
    ),
    ClassificationRule(
        "intro_marker", Category.INTRO,
        lambda b, ctx: b.kind is BlockKind.DELIMITED_SECTION
        and b.marker == ctx.patterns.intro_marker,
    ),
    ClassificationRule(
        "trailing_boilerplate", Category.DISCARD,
        lambda b, ctx: ctx.patterns.is_boilerplate(b.raw_text),
        explicit=False,
    ),
)


# ─── Positional fallback ────────────────────────────────────────────────────

IntroFallback = Callable[[Block, ClassificationContext], tuple[Category, str]]


def has_subheading(text: str) -> bool:
    return bool(SUBHEADING_RE.search(text))


def recognized_markers(patterns: MigrationPatterns) -> frozenset[str]:
    return patterns.recognized_markers()


def is_workflow_eligible(block: Block, patterns: MigrationPatterns) -> bool:
    """Blocks that end the leading-intro run.

    Structural sections with no rule of their own, anything carrying a
    sub-heading, and degraded unterminated sections.
    """
    if block.unterminated_marker:
        return True
    if block.kind is BlockKind.DELIMITED_SECTION and block.marker not in recognized_markers(patterns):
        return True
    if block.kind in (BlockKind.PLAIN_TEXT, BlockKind.DELIMITED_SECTION) and has_subheading(block.body):
        return True
    return False


def leading_paragraphs_as_intro(block: Block, ctx: ClassificationContext) -> tuple[Category, str]:
    """Treat the first few unmarked paragraphs as the intro.

    A block qualifies if it is among the first ``intro_block_limit`` content
    blocks, has no sub-heading and comes before the first workflow-eligible
    block. A ``# Title`` line in front of a ``<role>`` section is intro too.
    """
    idx = ctx.content_index.get(block.order)
    if (
        idx is not None
        and idx < ctx.patterns.intro_block_limit
        and (ctx.first_workflow_order is None or block.order < ctx.first_workflow_order)
        and not has_subheading(block.body)
    ):
        return Category.INTRO, "leading_intro_fallback"
    return Category.WORKFLOW, "workflow_fallback"


def intro_unless_role_section(block: Block, ctx: ClassificationContext) -> tuple[Category, str]:
    """Like ``leading_paragraphs_as_intro``, but off when a role section exists."""
    if ctx.has_intro_marker:
        return Category.WORKFLOW, "workflow_fallback"
    return leading_paragraphs_as_intro(block, ctx)


def no_intro_fallback(block: Block, ctx: ClassificationContext) -> tuple[Category, str]:
    """Stricter policy: unmarked content is always workflow."""
    return Category.WORKFLOW, "workflow_fallback"


# ─── Classification ─────────────────────────────────────────────────────────

@dataclass
class Classification:
    """Total block -> category assignment, with the rule that decided each."""
    categories: dict[int, Category] = field(default_factory=dict)
    rule_names: dict[int, str] = field(default_factory=dict)

    def category_of(self, block: Block) -> Category:
        return self.categories[block.order]

    def blocks_in(self, blocks: list[Block], category: Category) -> list[Block]:
        return sorted(
            (b for b in blocks if self.categories.get(b.order) is category),
            key=lambda b: b.order,
        )

    def counts(self) -> dict[Category, int]:
        result = {c: 0 for c in Category}
        for cat in self.categories.values():
            result[cat] += 1
        return result


def build_context(blocks: list[Block], patterns: MigrationPatterns) -> ClassificationContext:
    content_index: dict[int, int] = {}
    for b in blocks:
        if b.kind in (BlockKind.FRONTMATTER, BlockKind.DIRECTIVE) or b.is_blank:
            continue
        content_index[b.order] = len(content_index)

    has_intro_marker = any(
        b.kind is BlockKind.DELIMITED_SECTION and b.marker == patterns.intro_marker
        for b in blocks
    )
    first_workflow_order = next(
        (b.order for b in blocks if is_workflow_eligible(b, patterns)),
        None,
    )
    return ClassificationContext(
        patterns=patterns,
        content_index=content_index,
        has_intro_marker=has_intro_marker,
        first_workflow_order=first_workflow_order,
    )


def classify_blocks(
    blocks: list[Block],
    patterns: MigrationPatterns,
    intro_fallback: IntroFallback = leading_paragraphs_as_intro,
    rules: tuple[ClassificationRule, ...] = RULES,
) -> Classification:
    """Assign every block exactly one category.

    Raises AmbiguousClassification if explicit rules with different
    categories match the same block.
    """
    ctx = build_context(blocks, patterns)
    result = Classification()

    for block in blocks:
        explicit = [r for r in rules if r.explicit and r.predicate(block, ctx)]
        if len({r.category for r in explicit}) > 1:
            raise AmbiguousClassification(block.order, [r.name for r in explicit])

        rule = next((r for r in rules if r.predicate(block, ctx)), None)
        if rule is not None:
            category, name = rule.category, rule.name
        else:
            category, name = intro_fallback(block, ctx)

        result.categories[block.order] = category
        result.rule_names[block.order] = name

    return result
