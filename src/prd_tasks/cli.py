"""
prd-tasks - command-line front end working directly on PRD files

Usage:
    prd-tasks list <file> [--filter all|completed|uncompleted]
    prd-tasks toggle <file> <id>
    prd-tasks assign <file> <id> [<name>]
    prd-tasks add <file> <text> [--assignee NAME] [--heading TEXT] [--parent ID]
    prd-tasks dupes <file>
    prd-tasks fix <file>
    prd-tasks normalize <file>
    prd-tasks convert <file> [--heading TEXT]
    prd-tasks deconvert <file> <id>
    prd-tasks report <path>... [--format markdown|csv|json]

Examples:
    prd-tasks add docs/PRD.md "Write migration guide" --assignee alice --heading "Phase 2"
    prd-tasks toggle docs/PRD.md PRD-100004
    prd-tasks --root . fix docs/PRD-api.md
    prd-tasks report docs --format csv

Every write command accepts --dry-run to print the new document instead of
writing it. With --root, IDs used anywhere under that directory are never
handed out again.
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from .config import EngineConfig
from .errors import TaskEngineError
from .mutations import (
    apply_edits,
    assign_task,
    convert_list_items,
    deconvert_task,
    find_duplicates,
    insert_subtask,
    insert_task_after_last_task,
    insert_task_under_heading,
    normalize_checkboxes,
    resolve_duplicates,
    toggle_task,
)
from .parsers.document_parser import collect_ids, parse_document
from .reports import REPORT_FORMATS, render_report
from .utils.files import find_documents, read_document, split_lines, write_document
from .utils.ids import IdAllocator

log = logging.getLogger(__name__)


# --- helpers ---

def _read_only_config(config: EngineConfig) -> EngineConfig:
    return replace(config, auto_generate_ids=False, normalize_checkboxes=False)


def _allocator(args, text: str) -> IdAllocator:
    """Allocator seeded with the file's IDs, plus every document under --root."""
    config = args.config
    allocator = IdAllocator(prefix=config.id_prefix, floor=config.id_floor)
    allocator.observe(collect_ids(split_lines(text)[0], config.id_prefix))
    if args.root:
        for doc in find_documents(Path(args.root), config.file_patterns, set()):
            allocator.observe(collect_ids(split_lines(read_document(doc))[0], config.id_prefix))
    return allocator


def _commit(args, text: str, edits) -> None:
    if not edits:
        print("No changes")
        return
    new_text = apply_edits(text, edits)
    if args.dry_run:
        sys.stdout.write(new_text)
        return
    write_document(args.file, new_text)
    log.info("Wrote %d edit(s) to %s", len(edits), args.file)


def _find_heading_line(args, text: str, heading: str) -> int:
    tree = parse_document(text, config=_read_only_config(args.config)).tree
    found = tree.find_heading(heading)
    if found is None:
        raise TaskEngineError(f"Heading '{heading}' not found in {args.file}")
    return found.line


def _format_task(task, depth: int) -> str:
    box = "[x]" if task.completed else "[ ]"
    parts = [f"{'  ' * depth}{box}", task.id or "-", task.text]
    if task.assignees:
        parts.append(" ".join(f"@{a}" for a in task.assignees))
    return " ".join(parts)


# --- commands ---

def cmd_list(args) -> None:
    text = read_document(args.file)
    tree = parse_document(text, config=_read_only_config(args.config), document=args.file).tree

    def walk(tasks, depth):
        for task in tasks:
            if args.filter == "all" or task.completed == (args.filter == "completed"):
                print(_format_task(task, depth))
            walk(task.children, depth + 1)

    walk(tree.tasks, 0)


def cmd_toggle(args) -> None:
    text = read_document(args.file)
    result = toggle_task(text, task_id=args.id, prefix=args.config.id_prefix)
    _commit(args, text, result.edits)


def cmd_assign(args) -> None:
    text = read_document(args.file)
    result = assign_task(text, args.id, args.name, prefix=args.config.id_prefix)
    _commit(args, text, result.edits)


def cmd_add(args) -> None:
    text = read_document(args.file)
    allocator = _allocator(args, text)
    if args.parent:
        result = insert_subtask(text, args.parent, args.text, allocator=allocator, assignee=args.assignee)
    elif args.heading:
        line = _find_heading_line(args, text, args.heading)
        result = insert_task_under_heading(
            text, line, args.text, allocator=allocator, assignee=args.assignee
        )
    else:
        result = insert_task_after_last_task(text, args.text, allocator=allocator, assignee=args.assignee)
    _commit(args, text, result.edits)
    if not args.dry_run:
        print(f"Created: {result.task_id}")


def cmd_dupes(args) -> None:
    groups = find_duplicates(read_document(args.file), args.config.id_prefix)
    if not groups:
        print("No duplicate task IDs")
        return
    for task_id, lines in groups.items():
        print(f"{task_id}: lines {', '.join(str(n + 1) for n in lines)}")


def cmd_fix(args) -> None:
    text = read_document(args.file)
    edits = resolve_duplicates(text, allocator=_allocator(args, text))
    _commit(args, text, edits)
    if edits and not args.dry_run:
        print(f"Fixed {len(edits)} duplicate task ID{'s' if len(edits) > 1 else ''}")


def cmd_normalize(args) -> None:
    text = read_document(args.file)
    _commit(args, text, normalize_checkboxes(text, args.config.id_prefix))


def cmd_convert(args) -> None:
    text = read_document(args.file)
    heading_line = _find_heading_line(args, text, args.heading) if args.heading else None
    result = convert_list_items(text, allocator=_allocator(args, text), heading_line=heading_line)
    _commit(args, text, result.edits)
    if result.task_ids and not args.dry_run:
        print(f"Converted {len(result.task_ids)} item(s)")


def cmd_deconvert(args) -> None:
    text = read_document(args.file)
    result = deconvert_task(text, task_id=args.id, prefix=args.config.id_prefix)
    _commit(args, text, result.edits)


def cmd_report(args) -> None:
    config = _read_only_config(args.config)
    tasks = []
    for raw in args.paths:
        path = Path(raw)
        docs = find_documents(path, config.file_patterns, set()) if path.is_dir() else [path]
        for doc in docs:
            tree = parse_document(read_document(doc), config=config, document=doc).tree
            tasks.extend(tree.all_tasks())
    sys.stdout.write(render_report(tasks, args.format))


# --- main ---

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prd-tasks",
        description="Task management for Markdown PRD documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--root", help="Workspace root whose IDs must not be reused")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    def file_command(name: str, func, help_text: str, writes: bool = True):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("file", type=Path, help="PRD markdown file")
        if writes:
            p.add_argument("--dry-run", action="store_true", help="Print the result instead of writing")
        p.set_defaults(func=func)
        return p

    list_p = file_command("list", cmd_list, "List tasks", writes=False)
    list_p.add_argument("--filter", choices=["all", "completed", "uncompleted"], default="all")

    toggle_p = file_command("toggle", cmd_toggle, "Toggle a task")
    toggle_p.add_argument("id", help="Task ID")

    assign_p = file_command("assign", cmd_assign, "Assign a task (omit NAME to unassign)")
    assign_p.add_argument("id", help="Task ID")
    assign_p.add_argument("name", nargs="?", default=None, help="Assignee, with or without @")

    add_p = file_command("add", cmd_add, "Add a new task")
    add_p.add_argument("text", help="Task description")
    add_p.add_argument("--assignee", help="Assignee, with or without @")
    add_p.add_argument("--heading", help="Add as the last item under this heading")
    add_p.add_argument("--parent", help="Add as a subtask of this task ID")

    file_command("dupes", cmd_dupes, "Show duplicate task IDs", writes=False)
    file_command("fix", cmd_fix, "Give duplicate task IDs fresh IDs")
    file_command("normalize", cmd_normalize, "Normalise checkboxes and task line spacing")

    convert_p = file_command("convert", cmd_convert, "Convert list items to tasks")
    convert_p.add_argument("--heading", help="Only convert items under this heading")

    deconvert_p = file_command("deconvert", cmd_deconvert, "Convert a task back to a list item")
    deconvert_p.add_argument("id", help="Task ID")

    report_p = subparsers.add_parser("report", help="Progress report")
    report_p.add_argument("paths", nargs="+", help="PRD files or directories")
    report_p.add_argument("--format", choices=REPORT_FORMATS, default="markdown")
    report_p.set_defaults(func=cmd_report)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        args.config = EngineConfig.from_env()
        args.func(args)
    except (TaskEngineError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
