"""Process tree recorder for tracetree."""

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from queue import Queue

import psutil

from tracetree.models import ProcessNode

logger = logging.getLogger(__name__)

_PROCESS_ERRORS = (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _created(proc: psutil.Process) -> datetime:
    return datetime.fromtimestamp(proc.create_time(), tz=timezone.utc)


def _creation_order(proc: psutil.Process) -> tuple[float, int]:
    # Parents are always created before their children
    try:
        return (proc.create_time(), proc.pid)
    except _PROCESS_ERRORS:
        return (float("inf"), proc.pid)


@dataclass(slots=True)
class _ProcessRecord:
    """Mutable bookkeeping for one observed process."""

    proc: psutil.Process
    cmdline: list[str]
    started: datetime
    ended: datetime | None = None
    children: list[int] = field(default_factory=list)


class ProcessRecorder:
    """
    Records the tree of processes spawned by a command, using psutil.

    The command is spawned by ``start()``; a daemon thread then polls its
    descendants every ``poll_rate`` seconds, noting when each one appears and
    disappears. Snapshots of the tree are pushed to ``update_queue`` (if
    given) after every poll. Processes that start and exit between two polls
    are not seen.
    """

    def __init__(
        self,
        cmdline: Sequence[str],
        update_queue: Queue[ProcessNode] | None = None,
        poll_rate: float = 0.05,
    ) -> None:
        """
        Initialize the ProcessRecorder.

        Args:
            cmdline: The command to run, as argv.
            update_queue: Thread-safe queue to push tree snapshots to.
            poll_rate: How often to poll the process table (in seconds).
        """
        if not cmdline:
            raise ValueError("cmdline must not be empty")
        self._cmdline = list(cmdline)
        self._queue = update_queue
        self._poll_rate = max(0.01, poll_rate)
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._popen: psutil.Popen | None = None
        self._records: dict[int, _ProcessRecord] = {}

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.01, value)  # Minimum 0.01 seconds

    @property
    def is_running(self) -> bool:
        """Check if the recorder thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def cmdline(self) -> list[str]:
        """The command being recorded."""
        return list(self._cmdline)

    @property
    def pid(self) -> int | None:
        """Pid of the spawned command, once started."""
        return self._popen.pid if self._popen is not None else None

    @property
    def returncode(self) -> int | None:
        """Exit status of the spawned command, or None while it runs."""
        return self._popen.returncode if self._popen is not None else None

    def start(self) -> None:
        """
        Spawn the command and start the recording thread.

        Raises:
            OSError: If the command cannot be executed.
        """
        if self.is_running or self._popen is not None:
            return

        spawned = _now()
        self._popen = psutil.Popen(self._cmdline)
        logger.debug("spawned process %d: %s", self._popen.pid, self._cmdline)
        try:
            started = min(spawned, _created(self._popen))
        except _PROCESS_ERRORS:
            started = spawned
        with self._lock:
            self._records[self._popen.pid] = _ProcessRecord(
                proc=self._popen, cmdline=list(self._cmdline), started=started
            )

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="ProcessRecorder",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Terminate the command and stop the recording thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        # Only reap once the poll loop, which also reaps, has finished
        if self._popen is not None and self._popen.poll() is None:
            try:
                self._popen.terminate()
                self._popen.wait(timeout=timeout)
            except (psutil.NoSuchProcess, psutil.TimeoutExpired):
                pass

    def wait(self, timeout: float | None = None) -> ProcessNode:
        """Wait for the command and all its descendants to exit; return the tree."""
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        return self.snapshot()

    def snapshot(self) -> ProcessNode:
        """
        Build the process tree observed so far.

        Processes that are still running are given the current time as
        their end.
        """
        if self._popen is None:
            raise RuntimeError("recorder has not been started")
        now = _now()
        with self._lock:
            return self._build(self._popen.pid, now)

    def running(self) -> set[int]:
        """Return the pids of recorded processes that have not exited yet."""
        with self._lock:
            return {pid for pid, record in self._records.items() if record.ended is None}

    def _build(self, pid: int, now: datetime) -> ProcessNode:
        record = self._records[pid]
        ended = record.ended if record.ended is not None else now
        children = sorted(
            (self._records[child] for child in record.children),
            key=lambda r: r.started,
        )
        return ProcessNode(
            pid=pid,
            cmdline=tuple(record.cmdline),
            started=record.started,
            ended=max(ended, record.started),
            children=tuple(self._build(child.proc.pid, now) for child in children),
        )

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self._poll()
            except Exception:
                logger.exception("error while polling process tree")

            finished = self._finished()
            if self._queue is not None:
                self._queue.put(self.snapshot())
            if finished:
                logger.debug("process %d and all descendants exited", self._popen.pid)
                break

            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)

        self._close_all()

    def _finished(self) -> bool:
        with self._lock:
            return all(record.ended is not None for record in self._records.values())

    def _close_all(self) -> None:
        """Mark any process still open as ended now."""
        now = _now()
        with self._lock:
            for record in self._records.values():
                if record.ended is None:
                    record.ended = now

    def _poll(self) -> None:
        """Discover new descendants and note the ones that have exited."""
        now = _now()
        with self._lock:
            live = [pid for pid, record in self._records.items() if record.ended is None]

        for pid in live:
            record = self._records[pid]
            if not self._is_alive(pid, record.proc):
                with self._lock:
                    record.ended = max(now, record.started)
                logger.debug("[%d] exited", pid)
                continue

            try:
                with record.proc.oneshot():
                    cmdline = record.proc.cmdline()
                    descendants = record.proc.children(recursive=True)
            except _PROCESS_ERRORS:
                # Died or became inaccessible mid-poll, picked up next time
                continue

            with self._lock:
                if cmdline:
                    record.cmdline = cmdline
                for child in sorted(descendants, key=_creation_order):
                    if child.pid not in self._records:
                        self._add(child, default_parent=pid)

    def _is_alive(self, pid: int, proc: psutil.Process) -> bool:
        if self._popen is not None and pid == self._popen.pid:
            return self._popen.poll() is None
        try:
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except _PROCESS_ERRORS:
            return False

    def _add(self, proc: psutil.Process, default_parent: int) -> None:
        """Start tracking ``proc``. Caller must hold the lock."""
        try:
            with proc.oneshot():
                started = _created(proc)
                parent = proc.ppid()
                try:
                    cmdline = proc.cmdline()
                except psutil.AccessDenied:
                    cmdline = []
        except (psutil.NoSuchProcess, psutil.ZombieProcess, psutil.AccessDenied):
            return

        if parent not in self._records:
            parent = default_parent
        self._records[proc.pid] = _ProcessRecord(proc=proc, cmdline=cmdline, started=started)
        self._records[parent].children.append(proc.pid)
        logger.debug("[%d] new process %d: %s", parent, proc.pid, cmdline)


def record(cmdline: Sequence[str], poll_rate: float = 0.05) -> ProcessNode:
    """Run ``cmdline`` to completion and return its recorded process tree."""
    recorder = ProcessRecorder(cmdline, poll_rate=poll_rate)
    recorder.start()
    return recorder.wait()
