"""Flatten a process tree into timeline rows."""

from collections.abc import Callable
from datetime import timedelta

from tracetree.models import ProcessNode, Row

UNKNOWN_COMMAND = "<unknown>"


def elapsed_secs(ms: float) -> str:
    """Format a millisecond duration as seconds, e.g. ``1.500s``."""
    return f"{ms / 1000:.3f}s"


def command_name(cmdline: tuple[str, ...]) -> str:
    """Return the final path segment of argv[0], or ``<unknown>``."""
    if not cmdline:
        return UNKNOWN_COMMAND
    return cmdline[0].split("/")[-1]


def duration_secs(delta: timedelta) -> str:
    """Format a duration as seconds truncated to the millisecond, e.g. ``1.999s``."""
    ms = delta // timedelta(milliseconds=1)
    return f"{ms // 1000}.{ms % 1000:03d}s"


def to_row(node: ProcessNode) -> Row:
    """Build the Row for a single node, ignoring its children."""
    ms = (node.ended - node.started) / timedelta(milliseconds=1)
    return Row(
        pid=node.pid,
        cmd=command_name(node.cmdline),
        cmdline=" ".join(node.cmdline),
        start=node.started,
        end=node.ended,
        elapsed=elapsed_secs(ms),
    )


def flatten(root: ProcessNode) -> list[Row]:
    """
    Flatten a process tree into rows, depth-first pre-order.

    The root comes first, followed by the flattened subtree of each child
    in child order.
    """
    rows: list[Row] = []
    stack = [root]
    while stack:
        node = stack.pop()
        rows.append(to_row(node))
        # Reversed so the first child is popped next
        stack.extend(reversed(node.children))
    return rows


def format_process_tree(
    root: ProcessNode, include: Callable[[ProcessNode], bool] | None = None
) -> str:
    """
    Render a process tree as indented text, one process per line.

    Each line is ``<pid> <cmd> <args> [<elapsed>]``, indented with one tab
    per level of depth. Elapsed times are truncated to the millisecond.
    If ``include`` is given, only processes it accepts are printed; the
    others still count towards the depth of their descendants.
    """
    lines: list[str] = []
    stack: list[tuple[ProcessNode, int]] = [(root, 0)]
    while stack:
        node, depth = stack.pop()
        stack.extend((child, depth + 1) for child in reversed(node.children))
        if include is not None and not include(node):
            continue
        args = " ".join(node.cmdline[1:]) + " " if len(node.cmdline) > 1 else ""
        indent = "\t" * depth
        elapsed = duration_secs(node.ended - node.started)
        lines.append(f"{indent}{node.pid} {command_name(node.cmdline)} {args}[{elapsed}]")
    return "\n".join(lines)
