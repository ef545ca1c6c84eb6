"""State machine for the timeline detail panel."""

from dataclasses import dataclass

from tracetree.models import LayoutRow


@dataclass(slots=True, frozen=True)
class PanelState:
    """Snapshot of the detail panel."""

    visible: bool = False
    anchor: tuple[int, int] = (0, 0)  # Screen position of the last bar click
    content: LayoutRow | None = None


HIDDEN = PanelState()


class PanelController:
    """
    Tracks whether the detail panel is shown, where, and for which row.

    Hidden -> (bar click) -> Visible at (x, y) showing a row
    -> (any other click) -> Hidden.
    """

    def __init__(self) -> None:
        """Initialize the controller in the hidden state."""
        self._state = HIDDEN

    @property
    def state(self) -> PanelState:
        """Get the current panel state."""
        return self._state

    @property
    def visible(self) -> bool:
        """Check if the panel is showing."""
        return self._state.visible

    def show(self, row: LayoutRow, x: int, y: int) -> PanelState:
        """Show ``row`` anchored at the click position ``(x, y)``."""
        self._state = PanelState(visible=True, anchor=(x, y), content=row)
        return self._state

    def dismiss(self) -> PanelState:
        """Hide the panel."""
        self._state = HIDDEN
        return self._state
