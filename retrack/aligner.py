"""Startup alignment of free-running video cursors."""

from datetime import datetime
from typing import Optional, Sequence

from .peek2 import Peek2


def align_reader(approx_start_time: datetime, reader: Peek2) -> None:
    """
    Advance one cursor so its upcoming frame is the one closest to the start time.

    - If the upcoming frame is at or after the start time, nothing changes.
    - Otherwise frames are dropped pairwise until the second upcoming frame
      reaches the start time; the closer of the two is kept (ties keep the
      earlier frame).
    - If the stream ends before reaching the start time, its last frame is
      dropped and the cursor is left exhausted.
    """
    p1 = reader.peek1()
    if p1 is None or p1.timestamp >= approx_start_time:
        return

    p1_delta = abs(p1.timestamp - approx_start_time)
    while True:
        p2 = reader.peek2()
        if p2 is None:
            # Single pre-start frame remaining: skip it.
            if reader.peek1() is not None:
                reader.advance()
            return

        p2_delta = abs(p2.timestamp - approx_start_time)
        if p2.timestamp >= approx_start_time:
            if p2_delta < p1_delta:
                reader.advance()
            return

        # Not yet at the start time.
        reader.advance()
        p1_delta = p2_delta


def synchronize_readers_from(
    approx_start_time: datetime,
    readers: Sequence[Optional[Peek2]],
) -> None:
    """
    Position every cursor at its best first frame for a common start time.

    Each cursor is handled independently; None entries (cameras without
    video) are skipped.

    Args:
        approx_start_time: Target start, usually the latest camera start
        readers: Frame cursors, modified in place
    """
    for reader in readers:
        if reader is not None:
            align_reader(approx_start_time, reader)
