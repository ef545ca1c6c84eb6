"""Reading and writing JSON process profiles."""

import json
import logging
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from tracetree.models import ProcessNode

logger = logging.getLogger(__name__)


class ProfileError(ValueError):
    """Raised when a profile cannot be parsed into a process tree."""


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a profile timestamp.

    Accepts an ISO-8601 string (a trailing ``Z`` is allowed) or a number of
    milliseconds since the Unix epoch. Naive timestamps are taken as UTC.
    """
    if isinstance(value, bool):
        raise ProfileError(f"invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise ProfileError(f"invalid timestamp: {value!r}")
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (ValueError, OverflowError, OSError) as e:
            raise ProfileError(f"timestamp out of range: {value!r}") from e
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ProfileError(f"invalid timestamp: {value!r}") from e
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise ProfileError(f"invalid timestamp: {value!r}")


def format_timestamp(value: datetime) -> str:
    """Format a timestamp the way profiles store it (UTC, milliseconds)."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_node(data: Any, path: str) -> ProcessNode:
    if not isinstance(data, dict):
        raise ProfileError(f"{path}: expected an object, got {type(data).__name__}")
    for key in ("pid", "started", "ended"):
        if key not in data:
            raise ProfileError(f"{path}: missing {key!r}")

    pid = data["pid"]
    if not isinstance(pid, int) or isinstance(pid, bool):
        raise ProfileError(f"{path}: pid must be an integer, got {pid!r}")

    cmdline = data.get("cmdline") or []
    if not isinstance(cmdline, list) or not all(isinstance(arg, str) for arg in cmdline):
        raise ProfileError(f"{path}: cmdline must be a list of strings")

    started = parse_timestamp(data["started"])
    ended = parse_timestamp(data["ended"])
    if ended < started:
        raise ProfileError(f"{path}: process {pid} ended before it started")

    children = data.get("children") or []
    if not isinstance(children, list):
        raise ProfileError(f"{path}: children must be a list")

    return ProcessNode(
        pid=pid,
        cmdline=tuple(cmdline),
        started=started,
        ended=ended,
        children=tuple(
            _parse_node(child, f"{path}.children[{i}]") for i, child in enumerate(children)
        ),
    )


def parse_profile(data: Any) -> ProcessNode:
    """Build a process tree from already-decoded JSON data."""
    return _parse_node(data, "$")


def load_profile(text: str | bytes) -> ProcessNode:
    """
    Parse the text of a JSON profile.

    Raises:
        ProfileError: If the text is not JSON or does not describe a process tree.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProfileError(f"invalid JSON: {e}") from e
    except UnicodeDecodeError as e:
        raise ProfileError(f"profile is not valid UTF-8: {e}") from e
    except RecursionError as e:
        raise ProfileError("profile is nested too deeply") from e
    try:
        root = parse_profile(data)
    except RecursionError as e:
        raise ProfileError("profile is nested too deeply") from e
    logger.debug("loaded profile with %d processes", root.count())
    return root


def read_profile(path: str | Path) -> ProcessNode:
    """Read and parse a JSON profile from ``path``."""
    return load_profile(Path(path).read_bytes())


def to_dict(node: ProcessNode) -> dict[str, Any]:
    """Convert a process tree to JSON-ready data."""
    return {
        "pid": node.pid,
        "cmdline": list(node.cmdline),
        "started": format_timestamp(node.started),
        "ended": format_timestamp(node.ended),
        "children": [to_dict(child) for child in node.children],
    }


def dump_profile(node: ProcessNode, indent: int | None = None) -> str:
    """Serialize a process tree as a JSON profile."""
    return json.dumps(to_dict(node), indent=indent)
