"""Tests for the timeline layout engine."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from tracetree.flatten import flatten
from tracetree.layout import (
    MIN_BAR_WIDTH,
    MIN_SPAN_MS,
    EmptyProfileError,
    build_timeline,
    layout,
)
from tracetree.models import ProcessNode, Row

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def row(pid, start_ms, end_ms, cmd="sh"):
    """Build a Row with times relative to T0."""
    return Row(
        pid=pid,
        cmd=cmd,
        cmdline=cmd,
        start=T0 + timedelta(milliseconds=start_ms),
        end=T0 + timedelta(milliseconds=end_ms),
        elapsed=f"{(end_ms - start_ms) / 1000:.3f}s",
    )


def node(pid, start_ms, end_ms, children=()):
    """Build a ProcessNode with times relative to T0."""
    return ProcessNode(
        pid=pid,
        cmdline=("/bin/sh",),
        started=T0 + timedelta(milliseconds=start_ms),
        ended=T0 + timedelta(milliseconds=end_ms),
        children=tuple(children),
    )


def by_pid(layout_rows):
    return {lr.row.pid: lr for lr in layout_rows}


class TestScaling:
    """Tests for the time to width mapping."""

    def test_offset_and_width(self):
        """Test a 10s root on 1000 units puts +2s at 200 and 50ms at 5 wide."""
        rows = [row(1, 0, 10000), row(2, 2000, 2050)]

        placed = by_pid(layout(rows, 1000))

        assert placed[2].offset_px == pytest.approx(200)
        assert placed[2].raw_width_px == pytest.approx(5)
        assert placed[2].width_px == pytest.approx(5)

    def test_root_spans_full_width(self):
        """Test the root starts at 0 and fills the available width."""
        placed = by_pid(layout([row(1, 0, 10000)], 640))

        assert placed[1].offset_px == 0
        assert placed[1].width_px == pytest.approx(640)

    def test_minimum_bar_width(self):
        """Test tiny and zero durations are widened to the minimum."""
        rows = [row(1, 0, 10000), row(2, 3000, 3000.1), row(3, 4000, 4000)]

        placed = by_pid(layout(rows, 1000))

        assert MIN_BAR_WIDTH == 4
        assert placed[2].raw_width_px == pytest.approx(0.01)
        assert placed[2].width_px == 4
        assert placed[3].raw_width_px == 0
        assert placed[3].width_px == 4

    def test_widths_are_non_negative(self):
        """Test all offsets and widths are non-negative."""
        rows = [row(1, 0, 500), row(2, 0, 0), row(3, 100, 900), row(4, 499, 500)]

        for placed in layout(rows, 80):
            assert placed.offset_px >= 0
            assert placed.width_px >= MIN_BAR_WIDTH

    def test_origin_is_first_row_not_earliest(self):
        """Test the origin and scale come from rows[0], not the earliest row."""
        rows = [row(1, 1000, 2000), row(2, 0, 500)]

        placed = by_pid(layout(rows, 100))

        assert placed[1].offset_px == 0
        assert placed[1].width_px == pytest.approx(100)
        assert placed[2].raw_width_px == pytest.approx(50)

    def test_labels_relative_to_origin(self):
        """Test start and end labels are elapsed time since the origin."""
        rows = [row(1, 0, 10000), row(2, 1500, 2750)]

        placed = by_pid(layout(rows, 1000))

        assert placed[1].start_label == "0.000s"
        assert placed[1].end_label == "10.000s"
        assert placed[2].start_label == "1.500s"
        assert placed[2].end_label == "2.750s"


class TestOrdering:
    """Tests for the chronological sort."""

    def test_sorted_by_start(self):
        """Test output is ordered by start time."""
        rows = [row(1, 0, 1000), row(2, 600, 700), row(3, 100, 900), row(4, 300, 400)]

        placed = layout(rows, 100)

        assert [lr.row.pid for lr in placed] == [1, 3, 4, 2]

    def test_sort_is_stable(self):
        """Test rows with equal starts keep their flatten order."""
        rows = [row(1, 0, 1000), row(5, 200, 300), row(3, 200, 900), row(4, 200, 250)]

        placed = layout(rows, 100)

        assert [lr.row.pid for lr in placed] == [1, 5, 3, 4]

    def test_input_not_reordered(self):
        """Test the caller's sequence is left untouched."""
        rows = [row(1, 0, 1000), row(2, 600, 700), row(3, 100, 900)]

        layout(rows, 100)

        assert [r.pid for r in rows] == [1, 2, 3]


class TestErrors:
    """Tests for invalid and degenerate input."""

    def test_empty_rows(self):
        """Test an empty profile fails fast."""
        with pytest.raises(EmptyProfileError):
            layout([], 100)

    def test_empty_rows_is_value_error(self):
        """Test EmptyProfileError can be caught as ValueError."""
        with pytest.raises(ValueError):
            layout([], 100)

    @pytest.mark.parametrize("width", [0, -5])
    def test_non_positive_width(self, width):
        """Test a non-positive width is rejected."""
        with pytest.raises(ValueError):
            layout([row(1, 0, 1000)], width)

    def test_zero_span_root_is_clamped(self, caplog):
        """Test a zero-length root uses the minimum span instead of dividing by zero."""
        rows = [row(1, 0, 0), row(2, 0, 0)]

        with caplog.at_level(logging.WARNING, logger="tracetree.layout"):
            placed = layout(rows, 100)

        assert MIN_SPAN_MS == 1.0
        assert [lr.width_px for lr in placed] == [MIN_BAR_WIDTH, MIN_BAR_WIDTH]
        assert [lr.offset_px for lr in placed] == [0, 0]
        assert "clamping" in caplog.text

    def test_sub_millisecond_root(self):
        """Test a root shorter than the minimum span is scaled as 1ms."""
        rows = [row(1, 0, 0.5), row(2, 0.25, 0.5)]

        placed = by_pid(layout(rows, 100))

        assert placed[2].offset_px == pytest.approx(25)
        assert placed[1].raw_width_px == pytest.approx(50)


class TestBuildTimeline:
    """Tests for the full tree to layout pipeline."""

    def test_build_timeline(self):
        """Test build_timeline is flatten followed by layout."""
        tree = node(1, 0, 1000, [node(2, 500, 600), node(3, 100, 200)])

        placed = build_timeline(tree, 200)

        assert placed == layout(flatten(tree), 200)
        assert [lr.row.pid for lr in placed] == [1, 3, 2]

    def test_rerender_is_identical(self):
        """Test running the pipeline twice gives element-wise equal output."""
        tree = node(1, 0, 1000, [node(2, 0, 600, [node(4, 10, 20)]), node(3, 0, 200)])

        first = build_timeline(tree, 321)
        second = build_timeline(tree, 321)

        assert first == second
        assert [(lr.offset_px, lr.width_px, lr.start_label) for lr in first] == [
            (lr.offset_px, lr.width_px, lr.start_label) for lr in second
        ]
