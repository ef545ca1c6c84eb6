"""Timeline layout engine: map process rows onto a horizontal time axis."""

import logging
from collections.abc import Sequence
from datetime import timedelta

from tracetree.flatten import elapsed_secs, flatten
from tracetree.models import LayoutRow, ProcessNode, Row

logger = logging.getLogger(__name__)

MIN_BAR_WIDTH = 4  # Keeps zero-length processes visible and clickable
MIN_SPAN_MS = 1.0


class EmptyProfileError(ValueError):
    """Raised when there are no rows to lay out."""


def _ms(delta: timedelta) -> float:
    return delta / timedelta(milliseconds=1)


def layout(rows: Sequence[Row], available_width: float) -> list[LayoutRow]:
    """
    Place rows on a timeline ``available_width`` units wide.

    The origin is ``rows[0].start`` and the scale is derived from the first
    row's own duration, so ``rows`` is expected in flatten order with the
    root first. The result is sorted by start time; rows that start together
    keep their relative order.

    Raises:
        EmptyProfileError: If ``rows`` is empty.
        ValueError: If ``available_width`` is not positive.
    """
    if not rows:
        raise EmptyProfileError("cannot lay out an empty profile")
    if available_width <= 0:
        raise ValueError(f"available width must be positive, got {available_width}")

    origin = rows[0].start
    span = _ms(rows[0].end - origin)
    if span < MIN_SPAN_MS:
        logger.warning(
            "root process %d spans %.3fms, clamping to %.0fms", rows[0].pid, span, MIN_SPAN_MS
        )
        span = MIN_SPAN_MS
    factor = available_width / span
    logger.debug("available: %s, total: %.3fms, factor: %f", available_width, span, factor)

    placed = []
    for row in sorted(rows, key=lambda r: r.start):
        raw_width = row.duration_ms * factor
        placed.append(
            LayoutRow(
                row=row,
                offset_px=_ms(row.start - origin) * factor,
                raw_width_px=raw_width,
                width_px=max(MIN_BAR_WIDTH, raw_width),
                start_label=elapsed_secs(_ms(row.start - origin)),
                end_label=elapsed_secs(_ms(row.end - origin)),
            )
        )
    return placed


def build_timeline(root: ProcessNode, available_width: float) -> list[LayoutRow]:
    """Flatten ``root`` and lay it out; the whole render pipeline minus drawing."""
    return layout(flatten(root), available_width)
