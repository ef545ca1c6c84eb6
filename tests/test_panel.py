"""Tests for the detail panel state machine."""

from datetime import datetime, timezone

from tracetree.models import LayoutRow, Row
from tracetree.panel import HIDDEN, PanelController, PanelState

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def layout_row(pid: int) -> LayoutRow:
    """Build a minimal LayoutRow."""
    return LayoutRow(
        row=Row(pid=pid, cmd="sh", cmdline="sh", start=T0, end=T0, elapsed="0.000s"),
        offset_px=0.0,
        raw_width_px=0.0,
        width_px=4.0,
        start_label="0.000s",
        end_label="0.000s",
    )


def test_initial_state_hidden():
    """Test the panel starts hidden with no content."""
    controller = PanelController()

    assert controller.state == HIDDEN
    assert not controller.visible
    assert controller.state.content is None


def test_show():
    """Test show() makes the panel visible at the click with that row."""
    controller = PanelController()
    target = layout_row(7)

    state = controller.show(target, 12, 5)

    assert state.visible
    assert state.anchor == (12, 5)
    assert state.content is target
    assert controller.state is state


def test_show_then_dismiss_round_trip():
    """Test Hidden -> Visible -> Hidden."""
    controller = PanelController()

    controller.show(layout_row(1), 3, 4)
    state = controller.dismiss()

    assert state == HIDDEN
    assert not controller.visible


def test_show_replaces_content():
    """Test clicking another bar while visible moves the panel to it."""
    controller = PanelController()

    controller.show(layout_row(1), 3, 4)
    state = controller.show(layout_row(2), 30, 9)

    assert state.content.row.pid == 2
    assert state.anchor == (30, 9)


def test_dismiss_when_hidden_is_noop():
    """Test dismissing an already hidden panel stays hidden."""
    controller = PanelController()

    assert controller.dismiss() == HIDDEN
    assert controller.dismiss() == HIDDEN


def test_panel_state_is_frozen():
    """Test PanelState is immutable."""
    state = PanelState()

    try:
        state.visible = True
        raise AssertionError("Should have raised FrozenInstanceError")
    except AttributeError:
        pass
