"""tracetree - Textual timeline viewer."""

import logging
from collections.abc import Sequence
from queue import Empty, Queue

import requests
from textual import events, work
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical, VerticalScroll
from textual.css.query import NoMatches
from textual.message import Message
from textual.widgets import Footer, Header, Input, Label, Static
from textual.worker import get_current_worker

from tracetree.layout import build_timeline
from tracetree.models import LayoutRow, ProcessNode
from tracetree.panel import PanelController, PanelState
from tracetree.profile import ProfileError, load_profile, read_profile
from tracetree.recorder import ProcessRecorder

logger = logging.getLogger(__name__)

DEMO_URL = "https://luser.github.io/tracetree/cargo-sccache-build.json"
LABEL_WIDTH = 16  # Must match the .label width in TimelineRow CSS
DEFAULT_WIDTH = 80  # Used until the chart has been laid out
PANEL_FIELDS = ("pid", "cmd", "cmdline", "startpretty", "endpretty", "elapsed")


class ProfileLoaded(Message):
    """A process tree is ready to be drawn."""

    def __init__(self, tree: ProcessNode, source: str) -> None:
        super().__init__()
        self.tree = tree
        self.source = source


class TimelineBar(Static):
    """A clickable bar spanning one process's lifetime."""

    DEFAULT_CSS = """
    TimelineBar {
        height: 1;
        background: $accent;
    }

    TimelineBar:hover {
        background: $accent-lighten-2;
    }
    """

    class Selected(Message):
        """Posted when a bar is clicked."""

        def __init__(self, layout_row: LayoutRow, x: int, y: int) -> None:
            super().__init__()
            self.layout_row = layout_row
            self.x = x
            self.y = y

    def __init__(self, layout_row: LayoutRow) -> None:
        """Initialize the bar from its timeline geometry."""
        super().__init__("")
        self.layout_row = layout_row
        self.tooltip = layout_row.row.elapsed
        self.styles.width = max(1, round(layout_row.width_px))
        self.styles.offset = (round(layout_row.offset_px), 0)

    def on_click(self, event: events.Click) -> None:
        """Open the detail panel for this bar; keep the click from dismissing it."""
        event.stop()
        logger.debug("clicked %d", self.layout_row.row.pid)
        self.post_message(self.Selected(self.layout_row, event.screen_x, event.screen_y))


class TimelineRow(Horizontal):
    """One chart row: the command name and its bar."""

    DEFAULT_CSS = """
    TimelineRow {
        height: 1;
    }

    TimelineRow > .label {
        width: 16;
        padding-right: 1;
    }

    TimelineRow > .track {
        width: 1fr;
        height: 1;
        overflow: hidden hidden;
    }
    """

    def __init__(self, layout_row: LayoutRow) -> None:
        super().__init__()
        self.layout_row = layout_row

    def compose(self) -> ComposeResult:
        """Compose the label and bar cells."""
        yield Static(self.layout_row.row.cmd, classes="label", markup=False)
        with Container(classes="track"):
            yield TimelineBar(self.layout_row)


class TimelineChart(VerticalScroll):
    """The chart body, rebuilt from scratch on every render."""

    DEFAULT_CSS = """
    TimelineChart {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize TimelineChart."""
        super().__init__(*args, **kwargs)
        self.layout_rows: list[LayoutRow] = []

    def available_width(self) -> int:
        """Width in cells that bars can occupy."""
        width = self.scrollable_content_region.width - LABEL_WIDTH
        return width if width > 0 else DEFAULT_WIDTH

    async def render_rows(self, layout_rows: Sequence[LayoutRow]) -> None:
        """Replace every row in the chart with ``layout_rows``."""
        logger.debug("%d rows", len(layout_rows))
        rows = [TimelineRow(layout_row) for layout_row in layout_rows]
        with self.app.batch_update():
            await self.remove_children()
            await self.mount_all(rows)
        self.layout_rows = list(layout_rows)


class DetailPanel(Vertical):
    """Floating panel showing every field of the selected process."""

    DEFAULT_CSS = """
    DetailPanel {
        layer: overlay;
        display: none;
        width: 60;
        height: auto;
        padding: 0 1;
        border: round $accent;
        background: $panel;
    }

    DetailPanel > .field {
        height: auto;
    }

    DetailPanel .name {
        width: 12;
        text-style: bold;
    }

    DetailPanel .value {
        width: 1fr;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize DetailPanel."""
        super().__init__(*args, **kwargs)
        self.shown: dict[str, str] = {}

    def compose(self) -> ComposeResult:
        """Compose one slot per displayed field."""
        for name in PANEL_FIELDS:
            with Horizontal(classes="field"):
                yield Label(name, classes="name")
                yield Static("", id=f"panel-{name}", classes="value", markup=False)

    def show(self, state: PanelState) -> None:
        """Fill the slots from ``state.content`` and move to ``state.anchor``."""
        if state.content is None:
            return
        self.shown = {}
        for name, text in state.content.fields().items():
            try:
                slot = self.query_one(f"#panel-{name}", Static)
            except NoMatches:
                continue  # No slot for this field
            slot.update(text)
            self.shown[name] = text
        self.styles.offset = state.anchor
        self.display = True

    def hide(self) -> None:
        """Hide the panel."""
        self.display = False


class TimelineApp(App):
    """Main tracetree application."""

    TITLE = "tracetree"
    SUB_TITLE = "Process Timeline"
    AUTO_FOCUS = "#chart"

    CSS = """
    Screen {
        layout: vertical;
        layers: base overlay;
    }

    #file-input {
        dock: top;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("d", "demo", "Demo"),
        ("o", "open", "Open"),
        ("escape", "dismiss", "Close"),
    ]

    def __init__(
        self,
        path: str | None = None,
        demo_url: str = DEMO_URL,
        command: Sequence[str] | None = None,
        poll_rate: float = 0.05,
    ) -> None:
        """
        Initialize the TimelineApp.

        Args:
            path: Profile to load on startup.
            demo_url: Where the demo profile is fetched from.
            command: Command to record and show live instead of a profile.
            poll_rate: Recorder poll rate for ``command`` (in seconds).
        """
        super().__init__()
        self._path = path
        self._demo_url = demo_url
        self._panel = PanelController()
        self._tree: ProcessNode | None = None
        self._pending: ProcessNode | None = None
        self._update_queue: Queue[ProcessNode] | None = None
        self.recorder: ProcessRecorder | None = None
        if command:
            self._update_queue = Queue()
            self.recorder = ProcessRecorder(command, self._update_queue, poll_rate=poll_rate)

    @property
    def tree(self) -> ProcessNode | None:
        """The process tree currently on screen."""
        return self._tree

    @property
    def panel_state(self) -> PanelState:
        """Current detail panel state."""
        return self._panel.state

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield Header()
        yield Input(placeholder="Path to a JSON profile, then Enter", id="file-input")
        yield TimelineChart(id="chart")
        yield DetailPanel(id="panel")
        yield Footer()

    def on_mount(self) -> None:
        """Load the initial profile or start recording."""
        if self._path:
            self.load_file(self._path)
        if self.recorder is not None:
            try:
                self.recorder.start()
            except OSError as e:
                logger.error("could not run %s: %s", self.recorder.cmdline, e)
                self.notify(f"Could not run {self.recorder.cmdline[0]}: {e}", severity="error")
                return
            self.sub_title = " ".join(self.recorder.cmdline)
            # Set up a timer to poll the queue for updates
            self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain recorder snapshots and draw the most recent one."""
        while True:
            try:
                self._pending = self._update_queue.get_nowait()
            except Empty:
                break

        # Redrawing would close an open panel, so hold the snapshot until it closes
        if self._pending is not None and not self._panel.visible:
            self.post_message(ProfileLoaded(self._pending, self.sub_title))
            self._pending = None

    def on_input_submitted(self, event: Input.Submitted) -> None:
        """Load the profile whose path was typed into the file input."""
        path = event.value.strip()
        if path:
            self.load_file(path)

    @work(thread=True, exclusive=True, group="profile")
    def load_file(self, path: str) -> None:
        """Read and parse a profile from disk."""
        worker = get_current_worker()
        try:
            tree = read_profile(path)
        except (OSError, ProfileError) as e:
            logger.error("failed to load %s: %s", path, e)
            self.call_from_thread(self.notify, f"Could not load {path}: {e}", severity="error")
            return
        if not worker.is_cancelled:
            self.post_message(ProfileLoaded(tree, path))

    @work(thread=True, exclusive=True, group="profile")
    def load_demo(self) -> None:
        """Fetch and parse the demo profile."""
        worker = get_current_worker()
        try:
            response = requests.get(self._demo_url, timeout=15)
            response.raise_for_status()
            tree = load_profile(response.content)
        except (requests.RequestException, ProfileError) as e:
            logger.error("failed to load demo from %s: %s", self._demo_url, e)
            self.call_from_thread(self.notify, f"Could not load demo: {e}", severity="error")
            return
        if not worker.is_cancelled:
            self.post_message(ProfileLoaded(tree, self._demo_url))

    async def on_profile_loaded(self, message: ProfileLoaded) -> None:
        """Draw a newly loaded tree, replacing whatever is on screen."""
        chart = self.query_one(TimelineChart)
        layout_rows = build_timeline(message.tree, chart.available_width())
        self._dismiss_panel()
        await chart.render_rows(layout_rows)
        self._tree = message.tree
        self.sub_title = message.source

    def on_timeline_bar_selected(self, message: TimelineBar.Selected) -> None:
        """Show the detail panel for the clicked bar."""
        state = self._panel.show(message.layout_row, message.x, message.y)
        self.query_one(DetailPanel).show(state)

    def on_click(self, event: events.Click) -> None:
        """Any click that no bar absorbed closes the panel."""
        self._dismiss_panel()

    def _dismiss_panel(self) -> None:
        if self._panel.visible:
            self._panel.dismiss()
            self.query_one(DetailPanel).hide()

    def action_demo(self) -> None:
        """Handle demo action - load the built-in demo profile."""
        self.load_demo()

    def action_open(self) -> None:
        """Handle open action - focus the file input."""
        self.query_one("#file-input", Input).focus()

    def action_dismiss(self) -> None:
        """Handle dismiss action - close the detail panel."""
        self._dismiss_panel()

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        if self.recorder is not None:
            self.recorder.stop()
        self.exit()
