"""Command line interface for tracetree."""

import argparse
import logging
import signal
import sys
from pathlib import Path

from textual.logging import TextualHandler

from tracetree.app import DEMO_URL, TimelineApp
from tracetree.flatten import format_process_tree
from tracetree.profile import dump_profile
from tracetree.recorder import ProcessRecorder

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool, tui: bool) -> None:
    """
    Send log records to stderr, or to the Textual devtools console when a
    TUI owns the terminal.
    """
    handler = TextualHandler() if tui else logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        handlers=[handler],
        force=True,
    )


def _write(text: str, out: Path | None) -> None:
    if out is None:
        sys.stdout.write(text + "\n")
    else:
        out.write_text(text + "\n", encoding="utf-8")


def print_running(recorder: ProcessRecorder, file=None) -> None:
    """Print the processes of a recording that are still running."""
    file = file if file is not None else sys.stderr
    running = recorder.running()
    tree = format_process_tree(recorder.snapshot(), include=lambda node: node.pid in running)
    print("Active processes:", file=file)
    if tree:
        print(tree, file=file)
    file.flush()


def cmd_record(args: argparse.Namespace) -> int:
    """Run a command, record its process tree and print it."""
    recorder = ProcessRecorder(args.cmd, poll_rate=args.poll_rate)
    try:
        recorder.start()
    except OSError as e:
        print(f"ERROR: could not run {args.cmd[0]}: {e}", file=sys.stderr)
        return 127
    # SIGUSR1 prints what is still running without stopping the recording
    previous = None
    if hasattr(signal, "SIGUSR1"):
        previous = signal.signal(signal.SIGUSR1, lambda signum, frame: print_running(recorder))
    try:
        tree = recorder.wait()
    except KeyboardInterrupt:
        recorder.stop()
        tree = recorder.snapshot()
    finally:
        if previous is not None:
            signal.signal(signal.SIGUSR1, previous)
    logger.debug("recorded %d processes", tree.count())

    if args.format == "json":
        _write(dump_profile(tree), args.out)
    else:
        _write(format_process_tree(tree), args.out)
    return recorder.returncode or 0


def cmd_view(args: argparse.Namespace) -> int:
    """Open the timeline viewer."""
    path = str(args.file) if args.file is not None else None
    TimelineApp(path=path, demo_url=args.demo_url).run()
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Record a command while showing its timeline live."""
    app = TimelineApp(command=args.cmd, poll_rate=args.poll_rate)
    try:
        app.run()
    finally:
        if app.recorder is not None:
            app.recorder.stop()
    if app.recorder is None or app.recorder.pid is None:
        return 127
    if args.out is not None:
        _write(dump_profile(app.recorder.snapshot()), args.out)
    return app.recorder.returncode or 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="tracetree",
        description="Record process trees and view them as a timeline.",
        epilog="View JSON output with: tracetree view FILE",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_record = sub.add_parser("record", help="Run a command and record its process tree")
    p_record.add_argument("-o", "--out", type=Path, help="Write output to this file")
    p_record.add_argument(
        "-f", "--format", choices=["text", "json"], default="text", help="Output format"
    )
    p_record.add_argument("--poll-rate", type=float, default=0.05, help="Poll interval in seconds")
    p_record.add_argument("cmd", nargs=argparse.REMAINDER, help="Command to run")
    p_record.set_defaults(func=cmd_record)

    p_view = sub.add_parser("view", help="View a JSON profile")
    p_view.add_argument("file", nargs="?", type=Path, help="Profile to load")
    p_view.add_argument("--demo-url", default=DEMO_URL, help="Where to fetch the demo profile")
    p_view.set_defaults(func=cmd_view)

    p_run = sub.add_parser("run", help="Run a command and watch its timeline live")
    p_run.add_argument("-o", "--out", type=Path, help="Write the JSON profile to this file")
    p_run.add_argument("--poll-rate", type=float, default=0.05, help="Poll interval in seconds")
    p_run.add_argument("cmd", nargs=argparse.REMAINDER, help="Command to run")
    p_run.set_defaults(func=cmd_run)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for tracetree."""
    parser = build_parser()
    args = parser.parse_args(argv)

    cmd = getattr(args, "cmd", None)
    if cmd is not None:
        if cmd and cmd[0] == "--":
            cmd = cmd[1:]
        if not cmd:
            parser.error("a command to run is required")
        args.cmd = cmd

    configure_logging(args.verbose, tui=args.command != "record")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
