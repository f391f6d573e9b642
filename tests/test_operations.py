"""
Tests for mutations/operations.py and mutations/apply.py.

Covers:
- toggle round trip and checkbox-only rewrites
- assignment: replace, insert, remove, bot names, validation
- insertion points and blank-line rules (cursor, end, after last task,
  under heading, subtask)
- convert / deconvert (single item, whole section) and their round trip
- stale line hints
- non-destructive edits: every other line byte-identical
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

from prd_tasks.errors import StaleTargetError
from prd_tasks.models.edits import LineEdit, LineInsert
from prd_tasks.mutations import (
    apply_edits,
    assign_task,
    convert_list_item,
    convert_list_items,
    deconvert_task,
    insert_subtask,
    insert_task_after_last_task,
    insert_task_at_cursor,
    insert_task_at_end,
    insert_task_under_heading,
    normalize_checkboxes,
    toggle_task,
)
from prd_tasks.utils.ids import IdAllocator


def _apply(text, result):
    return apply_edits(text, result.edits)


def _assert_only_changed(before: str, after: str, changed_lines):
    """Every line outside ``changed_lines`` (indices into ``before``) is identical."""
    old = before.split("\n")
    new = after.split("\n")
    assert len(old) == len(new)
    for i, (a, b) in enumerate(zip(old, new)):
        if i not in changed_lines:
            assert a == b, f"line {i} changed"


# ---------------------------------------------------------------------------
# Toggle
# ---------------------------------------------------------------------------

class TestToggle:
    TEXT = "# Plan\n\n- [ ] Write docs @alice PRD-100001\n- [x] Ship PRD-100002\n"

    def test_open_to_done(self):
        result = toggle_task(self.TEXT, task_id="PRD-100001")
        assert result.edits == [
            LineEdit(line=2, new_text="- [x] Write docs @alice PRD-100001",
                     old_text="- [ ] Write docs @alice PRD-100001")
        ]
        assert result.task_id == "PRD-100001"

    def test_round_trip(self):
        once = _apply(self.TEXT, toggle_task(self.TEXT, task_id="PRD-100002"))
        twice = _apply(once, toggle_task(once, task_id="PRD-100002"))
        assert twice == self.TEXT

    def test_non_destructive(self):
        after = _apply(self.TEXT, toggle_task(self.TEXT, task_id="PRD-100001"))
        _assert_only_changed(self.TEXT, after, {2})

    def test_only_checkbox_rewritten(self):
        text = "*   [ ]  Weird   spacing PRD-100001"
        result = toggle_task(text, task_id="PRD-100001")
        assert result.edits[0].new_text == "*   [x]  Weird   spacing PRD-100001"

    def test_empty_checkbox(self):
        result = toggle_task("- [] Empty PRD-100001", task_id="PRD-100001")
        assert result.edits[0].new_text == "- [x] Empty PRD-100001"

    def test_upper_x_unchecks(self):
        result = toggle_task("- [X] Done PRD-100001", task_id="PRD-100001")
        assert result.edits[0].new_text == "- [ ] Done PRD-100001"

    def test_by_line_without_id(self):
        result = toggle_task("intro\n- [ ] no id\n", line=1)
        assert result.edits[0].new_text == "- [x] no id"
        assert result.task_id is None

    def test_unknown_id(self):
        with pytest.raises(StaleTargetError):
            toggle_task(self.TEXT, task_id="PRD-999999")

    def test_line_hint_mismatch(self):
        with pytest.raises(StaleTargetError):
            toggle_task(self.TEXT, task_id="PRD-100001", line=3)

    def test_line_hint_not_a_task(self):
        with pytest.raises(StaleTargetError):
            toggle_task(self.TEXT, line=0)

    def test_line_hint_out_of_range(self):
        with pytest.raises(StaleTargetError):
            toggle_task(self.TEXT, task_id="PRD-100001", line=40)

    def test_requires_target(self):
        with pytest.raises(ValueError):
            toggle_task(self.TEXT)


# ---------------------------------------------------------------------------
# Assign
# ---------------------------------------------------------------------------

class TestAssign:
    def test_insert_before_id(self):
        result = assign_task("- [ ] Task PRD-100001", "PRD-100001", "alice")
        assert result.edits[0].new_text == "- [ ] Task @alice PRD-100001"

    def test_replace_existing(self):
        result = assign_task("- [ ] Task @alice PRD-100001", "PRD-100001", "@bob")
        assert result.edits[0].new_text == "- [ ] Task @bob PRD-100001"

    def test_bot_assignee(self):
        result = assign_task("- [ ] Task PRD-100001", "PRD-100001", "@review-copilot")
        assert result.edits[0].new_text == "- [ ] Task @review-copilot PRD-100001"

    def test_remove(self):
        result = assign_task("- [ ] Task @alice PRD-100001", "PRD-100001", None)
        assert result.edits[0].new_text == "- [ ] Task PRD-100001"

    def test_remove_with_empty_string(self):
        result = assign_task("- [ ] Task @alice PRD-100001", "PRD-100001", "")
        assert result.edits[0].new_text == "- [ ] Task PRD-100001"

    def test_first_of_several_replaced(self):
        result = assign_task("- [ ] Task @a @b PRD-100001", "PRD-100001", "c")
        assert result.edits[0].new_text == "- [ ] Task @c @b PRD-100001"

    def test_keeps_bullet_and_checkbox(self):
        result = assign_task("* [x] Task PRD-100001", "PRD-100001", "alice")
        assert result.edits[0].new_text == "* [x] Task @alice PRD-100001"

    def test_line_end_without_id(self):
        result = assign_task("- [ ] Task", None, "alice", line=0)
        assert result.edits[0].new_text == "- [ ] Task @alice"

    def test_same_assignee_is_no_op(self):
        result = assign_task("- [ ] Task @alice PRD-100001", "PRD-100001", "alice")
        assert result.edits == []

    def test_invalid_name(self):
        with pytest.raises(ValueError):
            assign_task("- [ ] Task PRD-100001", "PRD-100001", "not valid!")


# ---------------------------------------------------------------------------
# Insertion
# ---------------------------------------------------------------------------

class TestInsertAtCursor:
    def test_blank_lines_around_prose(self):
        text = "# Title\nSome prose.\nMore prose.\n"
        result = insert_task_at_cursor(text, 1, "New", allocator=IdAllocator())
        assert result.edits == [LineInsert(line=2, lines=("", "- [ ] New PRD-100001", ""))]
        assert _apply(text, result) == "# Title\nSome prose.\n\n- [ ] New PRD-100001\n\nMore prose.\n"
        assert result.line == 3

    def test_no_blank_between_tasks(self):
        text = "- [ ] a PRD-100001\n- [ ] b PRD-100002\n"
        result = insert_task_at_cursor(text, 0, "mid", allocator=IdAllocator())
        assert _apply(text, result) == "- [ ] a PRD-100001\n- [ ] mid PRD-100003\n- [ ] b PRD-100002\n"

    def test_after_heading(self):
        text = "## H\nprose\n"
        result = insert_task_at_cursor(text, 0, "t", allocator=IdAllocator())
        assert _apply(text, result) == "## H\n- [ ] t PRD-100001\n\nprose\n"

    def test_with_assignee(self):
        result = insert_task_at_cursor("x\n", 0, "t", allocator=IdAllocator(), assignee="@alice")
        assert result.edits[0].lines[-1] == "- [ ] t @alice PRD-100001"

    def test_out_of_range(self):
        with pytest.raises(StaleTargetError):
            insert_task_at_cursor("x\n", 5, "t", allocator=IdAllocator())

    def test_empty_text_rejected_before_allocation(self):
        allocator = IdAllocator()
        with pytest.raises(ValueError):
            insert_task_at_cursor("x\n", 0, "   ", allocator=allocator)
        assert allocator.known == frozenset()


class TestInsertAtEnd:
    def test_after_last_non_blank(self):
        text = "Intro\n\n\n"
        assert _apply(text, insert_task_at_end(text, "t", allocator=IdAllocator())) == (
            "Intro\n\n- [ ] t PRD-100001\n\n\n"
        )

    def test_empty_document(self):
        assert _apply("", insert_task_at_end("", "t", allocator=IdAllocator())) == "- [ ] t PRD-100001\n"


class TestInsertAfterLastTask:
    def test_after_last_task(self):
        text = (
            "# Plan\n"
            "- [ ] A PRD-100001\n"
            "- [ ] B PRD-100002\n"
            "\n"
            "Notes here.\n"
        )
        result = insert_task_after_last_task(text, "C", allocator=IdAllocator())
        after = _apply(text, result)
        assert after == (
            "# Plan\n"
            "- [ ] A PRD-100001\n"
            "- [ ] B PRD-100002\n"
            "- [ ] C PRD-100003\n"
            "\n"
            "Notes here.\n"
        )
        assert result.task_id == "PRD-100003"

    def test_no_tasks_goes_to_end(self):
        text = "# Plan\n\nJust prose.\n"
        after = _apply(text, insert_task_after_last_task(text, "C", allocator=IdAllocator()))
        assert after == "# Plan\n\nJust prose.\n\n- [ ] C PRD-100001\n"


class TestInsertUnderHeading:
    TEXT = (
        "## Phase 1\n"
        "- [ ] A PRD-100001\n"
        "### Details\n"
        "- [ ] B PRD-100002\n"
        "## Phase 2\n"
    )

    def test_section_includes_subsections(self):
        result = insert_task_under_heading(self.TEXT, 0, "New", allocator=IdAllocator())
        assert result.edits == [LineInsert(line=4, lines=("- [ ] New PRD-100003",))]
        assert result.line == 4

    def test_subsection_ends_at_same_level(self):
        result = insert_task_under_heading(self.TEXT, 2, "New", allocator=IdAllocator())
        assert result.edits == [LineInsert(line=4, lines=("- [ ] New PRD-100003",))]

    def test_nested_subsection_before_next_top_heading(self):
        text = "# A\n- [ ] a PRD-100001\n## A.1\n- [ ] b PRD-100002\n# C\n- [ ] c PRD-100003\n"
        after = _apply(text, insert_task_under_heading(text, 0, "new", allocator=IdAllocator()))
        assert after == (
            "# A\n- [ ] a PRD-100001\n## A.1\n- [ ] b PRD-100002\n"
            "- [ ] new PRD-100004\n# C\n- [ ] c PRD-100003\n"
        )

    def test_empty_section(self):
        text = "## Empty\n## Next\n"
        result = insert_task_under_heading(text, 0, "t", allocator=IdAllocator())
        assert _apply(text, result) == "## Empty\n\n- [ ] t PRD-100001\n\n## Next\n"
        assert result.line == 2

    def test_empty_section_keeps_existing_blank(self):
        text = "## Empty\n\n## Next\n"
        after = _apply(text, insert_task_under_heading(text, 0, "t", allocator=IdAllocator()))
        assert after == "## Empty\n\n- [ ] t PRD-100001\n\n## Next\n"

    def test_section_with_trailing_blank(self):
        text = "## One\n- [ ] a PRD-100001\n\n## Two\n"
        after = _apply(text, insert_task_under_heading(text, 0, "b", allocator=IdAllocator()))
        assert after == "## One\n- [ ] a PRD-100001\n- [ ] b PRD-100002\n\n## Two\n"

    def test_heading_moved(self):
        with pytest.raises(StaleTargetError):
            insert_task_under_heading(self.TEXT, 1, "t", allocator=IdAllocator())

    def test_heading_renamed(self):
        with pytest.raises(StaleTargetError):
            insert_task_under_heading(
                self.TEXT, 0, "t", allocator=IdAllocator(), expected_heading="Phase 9"
            )


class TestInsertSubtask:
    TEXT = (
        "- [ ] Parent PRD-100001\n"
        "  - [ ] Child PRD-100002\n"
        "    - [ ] Grand PRD-100003\n"
        "- [ ] Other PRD-100004\n"
    )

    def test_after_last_descendant(self):
        result = insert_subtask(self.TEXT, "PRD-100001", "Sub", allocator=IdAllocator())
        assert result.edits == [LineInsert(line=3, lines=("  - [ ] Sub PRD-100005",))]

    def test_leaf_parent(self):
        result = insert_subtask(self.TEXT, "PRD-100004", "Sub", allocator=IdAllocator())
        after = _apply(self.TEXT, result)
        assert after.endswith("- [ ] Other PRD-100004\n  - [ ] Sub PRD-100005\n")

    def test_stops_at_heading(self):
        text = "- [ ] P PRD-100001\n  - [ ] c PRD-100002\n## Next\n  - [ ] x PRD-100003\n"
        result = insert_subtask(text, "PRD-100001", "s", allocator=IdAllocator())
        assert result.edits[0].line == 2

    def test_stale_parent_line(self):
        with pytest.raises(StaleTargetError):
            insert_subtask(self.TEXT, "PRD-100001", "Sub", allocator=IdAllocator(), parent_line=1)


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------

class TestConvert:
    def test_single_item(self):
        result = convert_list_item("  * star item\n", 0, allocator=IdAllocator())
        assert result.edits[0].new_text == "  - [ ] star item PRD-100001"

    def test_task_not_convertible(self):
        with pytest.raises(StaleTargetError):
            convert_list_item("- [ ] task PRD-100001\n", 0, allocator=IdAllocator())

    def test_item_with_id_not_convertible(self):
        with pytest.raises(StaleTargetError):
            convert_list_item("- item PRD-100001\n", 0, allocator=IdAllocator())

    def test_section_only(self):
        text = (
            "# A\n"
            "- one\n"
            "- [ ] t PRD-100001\n"
            "1. two\n"
            "# B\n"
            "- three\n"
        )
        result = convert_list_items(text, allocator=IdAllocator(), heading_line=0)
        assert result.task_ids == ["PRD-100002", "PRD-100003"]
        after = _apply(text, result)
        assert after.split("\n")[1] == "- [ ] one PRD-100002"
        assert after.split("\n")[3] == "- [ ] two PRD-100003"
        assert after.split("\n")[5] == "- three"

    def test_whole_document(self):
        text = "- one\n# B\n- two\n"
        result = convert_list_items(text, allocator=IdAllocator())
        assert result.task_ids == ["PRD-100001", "PRD-100002"]

    def test_nothing_to_convert(self):
        result = convert_list_items("# A\nprose\n", allocator=IdAllocator())
        assert not result.changed

    def test_bad_heading_line(self):
        with pytest.raises(StaleTargetError):
            convert_list_items("# A\n- one\n", allocator=IdAllocator(), heading_line=1)


class TestDeconvert:
    def test_keeps_indent_and_assignee(self):
        result = deconvert_task("  * [x] Done thing @alice PRD-100005\n", task_id="PRD-100005")
        assert result.edits[0].new_text == "  - Done thing @alice"

    def test_round_trip(self):
        original = "Intro\n- plain item\nOutro\n"
        allocator = IdAllocator()
        converted = _apply(original, convert_list_item(original, 1, allocator=allocator))
        task_id = converted.split("\n")[1].split()[-1]
        restored = _apply(converted, deconvert_task(converted, task_id=task_id))
        assert restored == original

    def test_round_trip_keeps_added_assignee(self):
        original = "* plain item\n"
        converted = _apply(original, convert_list_item(original, 0, allocator=IdAllocator()))
        assigned = _apply(converted, assign_task(converted, "PRD-100001", "bob"))
        restored = _apply(assigned, deconvert_task(assigned, task_id="PRD-100001"))
        assert restored == "- plain item @bob\n"


# ---------------------------------------------------------------------------
# Normalisation / apply
# ---------------------------------------------------------------------------

class TestNormalizeCheckboxes:
    def test_edits_only_irregular_lines(self):
        text = "* [X] A PRD-100001\n- [ ] B PRD-100002\n-[] C\n"
        edits = normalize_checkboxes(text)
        assert [(e.line, e.new_text) for e in edits] == [
            (0, "- [x] A PRD-100001"),
            (2, "- [ ] C"),
        ]

    def test_idempotent(self):
        text = "* [X] A PRD-100001\n- [x ] B\n"
        once = apply_edits(text, normalize_checkboxes(text))
        assert normalize_checkboxes(once) == []


class TestApplyEdits:
    def test_replace_and_insert_in_one_batch(self):
        text = "a\nb\nc"
        edits = [LineEdit(line=1, new_text="B", old_text="b"), LineInsert(line=3, lines=("d",))]
        assert apply_edits(text, edits) == "a\nB\nc\nd"

    def test_batch_is_atomic(self):
        text = "a\nb\n"
        edits = [LineEdit(line=0, new_text="A", old_text="a"), LineEdit(line=1, new_text="B", old_text="x")]
        with pytest.raises(StaleTargetError):
            apply_edits(text, edits)

    def test_double_replace_rejected(self):
        with pytest.raises(ValueError):
            apply_edits("a\n", [LineEdit(line=0, new_text="x"), LineEdit(line=0, new_text="y")])

    def test_crlf_preserved(self):
        assert apply_edits("a\r\nb\r\n", [LineEdit(line=1, new_text="B")]) == "a\r\nB\r\n"

    def test_empty_batch(self):
        assert apply_edits("same\n", []) == "same\n"
