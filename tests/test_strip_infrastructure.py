#!/usr/bin/env python3
"""
Tests for Stage 3: Infrastructure stripping (agent_migration/strip_infrastructure.py)

Run: pytest tests/test_strip_infrastructure.py -v
"""

import dataclasses

import pytest

from agent_migration.classify_blocks import Category, classify_blocks
from agent_migration.patterns import BOILERPLATE_RULE, load_patterns
from agent_migration.strip_infrastructure import DELIMITER_RULE, strip_block, strip_blocks
from agent_migration.tokenize_blocks import tokenize_document

PATTERNS = load_patterns()

BOILERPLATE = (
    "**DISPLAY ALL 5 CORE PRINCIPLES AT THE START OF EVERY RESPONSE TO MAINTAIN "
    "INSTRUCTION CONTINUITY.**"
)


def strip(text):
    blocks = tokenize_document(text, PATTERNS).blocks
    cls = classify_blocks(blocks, PATTERNS)
    cleaned, removals = strip_blocks(blocks, cls, PATTERNS)
    return cleaned, removals, cls


# ─── Single blocks ──────────────────────────────────────────────────────────

class TestStripBlock:
    def test_delimiters_removed(self):
        block = tokenize_document("<workflow>\nDo X.\n</workflow>\n\n", PATTERNS).blocks[0]
        cleaned, removals = strip_block(block, PATTERNS)
        assert cleaned.clean_text == "Do X.\n"
        assert [(r.rule, r.text) for r in removals] == [
            (DELIMITER_RULE, "<workflow>\n"),
            (DELIMITER_RULE, "</workflow>\n\n"),
        ]

    def test_raw_text_untouched(self):
        text = "<workflow>\nDo X.\n</workflow>\n"
        block = tokenize_document(text, PATTERNS).blocks[0]
        cleaned, _ = strip_block(block, PATTERNS)
        assert cleaned.raw_text == text
        assert block.clean_text is None

    def test_mid_paragraph_directive_removed(self):
        text = "Step one.\n@.claude/shared/a.md\nStep two.\n"
        block = tokenize_document(text, PATTERNS).blocks[0]
        cleaned, removals = strip_block(block, PATTERNS)
        assert cleaned.clean_text == "Step one.\nStep two.\n"
        assert [(r.rule, r.text) for r in removals] == [("markdown_import", "@.claude/shared/a.md\n")]

    def test_trailing_boilerplate_removed(self):
        text = f"Finish the task. {BOILERPLATE}\n"
        block = tokenize_document(text, PATTERNS).blocks[0]
        cleaned, removals = strip_block(block, PATTERNS)
        assert cleaned.clean_text == "Finish the task. "
        assert removals[0].rule == BOILERPLATE_RULE
        assert removals[0].text.strip() == BOILERPLATE

    def test_unknown_directive_kept(self):
        text = "Step.\n{% custom_tag 'x' %}\n@notes.txt\n"
        block = tokenize_document(text, PATTERNS).blocks[0]
        cleaned, removals = strip_block(block, PATTERNS)
        assert cleaned.clean_text == text
        assert removals == []


# ─── Prose markup ───────────────────────────────────────────────────────────

class TestProseMarkup:
    def test_html_details_block_kept(self):
        text = "## Steps\n\n<details>\n<summary>More\nHidden text.\n</details>\n"
        cleaned, removals, cls = strip(text)
        assert cls.category_of(cleaned[1]) is Category.WORKFLOW
        assert cleaned[1].clean_text == "<details>\n<summary>More\nHidden text.\n</details>\n"
        assert removals == []

    def test_inline_markup_line_not_cut(self):
        text = "<b>Do</b> this and <b>that</b>\n"
        cleaned, removals, _ = strip(text)
        assert cleaned[0].clean_text == text
        assert removals == []

    def test_kbd_inside_section_kept(self):
        text = "<workflow>\nPress\n<kbd>\nCtrl+S\n</kbd>\nto save.\n</workflow>\n"
        cleaned, removals, _ = strip(text)
        assert cleaned[0].clean_text == "Press\n<kbd>\nCtrl+S\n</kbd>\nto save.\n"
        assert [r.text for r in removals] == ["<workflow>\n", "</workflow>\n"]

    def test_section_of_unconfigured_name_keeps_tag_lines(self):
        text = "<notes>\nKeep me.\n</notes>\n"
        custom = dataclasses.replace(PATTERNS, structural_sections=frozenset({"notes"}))
        block = tokenize_document(text, custom).blocks[0]
        cleaned, removals = strip_block(block, PATTERNS)
        assert cleaned.clean_text == text
        assert removals == []


# ─── Whole documents ────────────────────────────────────────────────────────

class TestStripBlocks:
    def test_discarded_blocks_keep_raw_text(self):
        text = "---\nname: x\n---\n<role>X</role>\n"
        cleaned, removals, cls = strip(text)
        assert cls.category_of(cleaned[0]) is Category.DISCARD
        assert cleaned[0].clean_text == cleaned[0].raw_text
        assert all(r.block_order != 0 for r in removals)

    def test_every_block_gets_clean_text(self):
        cleaned, _, _ = strip("a\n\n<examples>\nb\n</examples>\n")
        assert all(b.clean_text is not None for b in cleaned)


PARAGRAPHS = [
    "You are an implementer.",
    "## Workflow\nRead the task.\nWrite the code.\nRun the tests.",
    "<critical_requirements>\nNever skip tests.\nNever push to main.\n</critical_requirements>",
]

INJECTIONS = [
    "@.claude/shared/core-principles.md",
    "{% include 'partials/footer.md' %}",
    "<!-- include: shared/output-format.md -->",
    BOILERPLATE,
]


class TestNoSilentLoss:
    @pytest.mark.parametrize("injected", INJECTIONS)
    @pytest.mark.parametrize("para,line", [(1, 1), (1, 2), (1, 3), (2, 2)])
    def test_only_injected_line_removed(self, injected, para, line):
        base = "\n\n".join(PARAGRAPHS) + "\n"
        paras = list(PARAGRAPHS)
        lines = paras[para].split("\n")
        lines.insert(line, injected)
        paras[para] = "\n".join(lines)
        dirty = "\n\n".join(paras) + "\n"

        clean_cleaned, clean_removals, _ = strip(base)
        dirty_cleaned, dirty_removals, _ = strip(dirty)

        assert [b.clean_text for b in dirty_cleaned] == [b.clean_text for b in clean_cleaned]
        extra = [r for r in dirty_removals if r.rule != DELIMITER_RULE]
        assert [r.text.strip() for r in extra] == [injected]
        assert len(dirty_removals) == len(clean_removals) + 1
