"""
Tests for tools/task_tools.py.

Uses a real TaskCache backed by a temporary workspace on disk.
Exercises the MCP tool functions directly (bypasses transport).
"""

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

from prd_tasks.cache.task_cache import TaskCache
from prd_tasks.tools.task_tools import handle_convert_list_items, register_task_tools


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_workspace(tmp_path: Path) -> Path:
    root = tmp_path / "ws"
    root.mkdir()
    (root / "PRD.md").write_text(
        "# Launch\n"
        "\n"
        "## Backend\n"
        "\n"
        "- [ ] Design schema @alice PRD-100001\n"
        "  - [ ] Review schema PRD-100002\n"
        "- [x] Set up repo @bob PRD-100003\n"
        "\n"
        "## Frontend\n"
        "\n"
        "- Landing page\n"
        "- Signup form\n",
        encoding="utf-8",
    )
    return root


class _FakeMCP:
    """Minimal fake to capture tool registrations."""

    def __init__(self):
        self._tools = {}

    def tool(self, *args, **kwargs):
        """Decorator that records functions by name."""
        def decorator(fn):
            self._tools[fn.__name__] = fn
            return fn
        return decorator

    def get(self, name: str):
        return self._tools[name]


@pytest.fixture
def setup(tmp_path):
    root = _make_workspace(tmp_path)
    cache = TaskCache()
    cache.initialize(root, set())

    mcp = _FakeMCP()
    register_task_tools(mcp, cache)

    return mcp, cache, root


def test_all_tools_registered(setup):
    mcp, _, _ = setup
    assert set(mcp._tools) == {
        "list_tasks", "get_task", "toggle_task", "create_task", "assign_task",
        "find_duplicates", "fix_duplicates", "normalize_document",
        "convert_list_items", "deconvert_task", "progress_report", "cache_status",
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class TestListTasks:
    def test_list_all(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("list_tasks")())
        assert [t["id"] for t in data] == ["PRD-100001", "PRD-100002", "PRD-100003"]
        assert "children" not in data[0]

    def test_list_completed(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("list_tasks")(filter="completed"))
        assert [t["id"] for t in data] == ["PRD-100003"]
        assert data[0]["assignee"] == "bob"

    def test_task_fields(self, setup):
        mcp, _, root = setup
        task = json.loads(mcp.get("list_tasks")())[1]
        assert task["text"] == "Review schema"
        assert task["parent_id"] == "PRD-100001"
        assert task["headers"] == ["Launch", "Backend"]
        assert task["section"] == "Backend"
        assert task["indent"] == 2
        assert task["line"] == 5
        assert task["document"] == str(root / "PRD.md")

    def test_bad_filter(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("list_tasks")(filter="open"))
        assert "error" in data

    def test_large_document_not_truncated(self, setup):
        mcp, _, root = setup
        (root / "big-prd.md").write_text(
            "".join(f"- [ ] Item {i} PRD-{200001 + i}\n" for i in range(1500)),
            encoding="utf-8",
        )
        data = json.loads(mcp.get("list_tasks")(document="big-prd.md"))
        assert len(data) == 1500
        assert data[-1]["id"] == "PRD-201500"

        report = json.loads(mcp.get("progress_report")(document="big-prd.md"))
        assert "- Total Tasks: 1500" in report["report"]


class TestGetTask:
    def test_get_with_children(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("get_task")(taskId="PRD-100001"))
        assert data["text"] == "Design schema"
        assert [c["id"] for c in data["children"]] == ["PRD-100002"]

    def test_get_nonexistent(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("get_task")(taskId="PRD-999999"))
        assert data == {"error": "Task PRD-999999 not found"}


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

class TestToggleTask:
    def test_toggle(self, setup):
        mcp, _, root = setup
        data = json.loads(mcp.get("toggle_task")(taskId="PRD-100001"))
        assert data["message"] == "Task PRD-100001 marked as completed"
        assert data["task"]["completed"] is True
        assert "- [x] Design schema @alice PRD-100001" in (root / "PRD.md").read_text(encoding="utf-8")

    def test_toggle_back(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("toggle_task")(taskId="PRD-100003"))
        assert data["message"] == "Task PRD-100003 marked as uncompleted"

    def test_toggle_missing(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("toggle_task")(taskId="PRD-999999"))
        assert data == {"error": "Task PRD-999999 not found"}


class TestCreateTask:
    def test_create(self, setup):
        mcp, cache, _ = setup
        data = json.loads(mcp.get("create_task")(text="Write migrations", assignee="@carol"))
        assert data["message"] == "Created task PRD-100004: Write migrations (assigned to @carol)"
        assert data["task"]["section"] == "Backend"
        assert cache.get_task("PRD-100004") is not None

    def test_create_unassigned(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("create_task")(text="Write migrations"))
        assert data["message"] == "Created task PRD-100004: Write migrations"

    def test_create_empty_text(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("create_task")(text="   "))
        assert "error" in data

    def test_create_unknown_document(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("create_task")(text="x", document="other.md"))
        assert "error" in data


class TestAssignTask:
    def test_assign(self, setup):
        mcp, _, root = setup
        data = json.loads(mcp.get("assign_task")(taskId="PRD-100002", assignee="dave"))
        assert data["message"] == "Task PRD-100002 assigned to @dave"
        assert "  - [ ] Review schema @dave PRD-100002" in (root / "PRD.md").read_text(encoding="utf-8")

    def test_reassign(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("assign_task")(taskId="PRD-100001", assignee="bob-copilot"))
        assert data["task"]["assignees"] == ["bob-copilot"]

    def test_unassign(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("assign_task")(taskId="PRD-100001", assignee=""))
        assert data["message"] == "Task PRD-100001 unassigned"

    def test_invalid_name(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("assign_task")(taskId="PRD-100001", assignee="two words"))
        assert "error" in data


class TestConversion:
    def test_convert_section(self, setup):
        mcp, _, root = setup
        data = json.loads(mcp.get("convert_list_items")(heading="Frontend"))
        assert data["converted"] == 2
        assert [t["id"] for t in data["tasks"]] == ["PRD-100004", "PRD-100005"]
        text = (root / "PRD.md").read_text(encoding="utf-8")
        assert "- [ ] Landing page PRD-100004\n- [ ] Signup form PRD-100005\n" in text

    def test_convert_single_line(self, setup):
        _, cache, _ = setup
        data = handle_convert_list_items(cache, document="PRD.md", line=11)
        assert [t["text"] for t in data["tasks"]] == ["Signup form"]

    def test_convert_unknown_heading(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("convert_list_items")(heading="Ops"))
        assert "error" in data

    def test_deconvert(self, setup):
        mcp, cache, _ = setup
        data = json.loads(mcp.get("deconvert_task")(taskId="PRD-100003"))
        assert data["text"] == "- Set up repo @bob"
        assert data["line"] == 6
        assert cache.get_task("PRD-100003") is None


class TestDocumentPasses:
    def test_no_duplicates(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("find_duplicates")())
        assert data == {"has_duplicates": False, "documents": {}}

    def test_find_and_fix(self, setup):
        mcp, _, root = setup
        path = root / "PRD.md"
        path.write_text(
            path.read_text(encoding="utf-8") + "- [ ] Copy PRD-100001\n", encoding="utf-8"
        )

        found = json.loads(mcp.get("find_duplicates")(document="PRD.md"))
        assert found["has_duplicates"] is True
        assert found["documents"][str(path)] == {"PRD-100001": [4, 12]}

        fixed = json.loads(mcp.get("fix_duplicates")())
        assert fixed["fixed"] == 1
        assert fixed["documents"][str(path)][0]["old_id"] == "PRD-100001"
        assert json.loads(mcp.get("find_duplicates")())["has_duplicates"] is False

    def test_normalize_clean_document(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("normalize_document")())
        assert data == {"lines_changed": 0, "documents": {}}


class TestReportAndStatus:
    def test_markdown_report(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("progress_report")())
        assert data["format"] == "markdown"
        assert "- Total Tasks: 3" in data["report"]
        assert "| @alice | 1 | 0 | 0% |" in data["report"]

    def test_unknown_format(self, setup):
        mcp, _, _ = setup
        data = json.loads(mcp.get("progress_report")(format="xml"))
        assert "error" in data

    def test_cache_status(self, setup):
        mcp, _, root = setup
        data = json.loads(mcp.get("cache_status")())
        assert data["documents_indexed"] == 1
        assert data["tasks_indexed"] == 3
        assert data["root"] == str(root)
