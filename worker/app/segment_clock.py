from __future__ import annotations
import math
from dataclasses import dataclass
from typing import List, Optional

WINDOW_SIZE = 60


@dataclass(frozen=True)
class Window:
    """Half-open [start, end) range in whole seconds."""
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass
class ClockTick:
    windows: List[Window]
    watermark: int


def live_windows(
    last_processed: Optional[int],
    now: int,
    window_size: int = WINDOW_SIZE,
) -> ClockTick:
    """
    Windows a live source owes since its watermark.

    Windows are stepped from the watermark, never from `now`, so consecutive
    ticks tile the timeline without gaps or overlap. Several windows come back
    when the scheduler missed ticks (gap-fill); none when less than a full
    window has elapsed. A source without a watermark is seeded one window
    behind `now` so its first tick yields exactly the current window.
    """
    now = int(now)
    if last_processed is None:
        last_processed = now - window_size

    windows: List[Window] = []
    start = int(last_processed)
    while start + window_size <= now:
        windows.append(Window(start, start + window_size))
        start += window_size

    watermark = windows[-1].end if windows else int(last_processed)
    return ClockTick(windows=windows, watermark=watermark)


def duration_windows(duration: float, window_size: int = WINDOW_SIZE) -> List[Window]:
    """
    Splits a finished recording into complete windows plus a tail window.

    A fractional duration rounds the tail end up; the host clips past the
    last frame without complaint.
    """
    if duration <= 0:
        return []

    complete = int(duration // window_size)
    windows = [Window(i * window_size, (i + 1) * window_size) for i in range(complete)]

    tail_start = complete * window_size
    if duration > tail_start:
        windows.append(Window(tail_start, int(math.ceil(duration))))
    return windows
