"""
Progress composition for nested sync phases.

Progress is a float in [0, 100] reported to a Callable[[float], None].
Nested phases map their own 0-100 onto a slice of the parent's range with
scaled(). The fleet level wraps its reporter in MonotonicProgress so the
user never sees the bar move backwards.

Media sync milestones:
    offline actions replayed     1
    reconciliation pass 1        2
    reconciliation pass 2        3
    new media retrieval          3 -> 100

Per item within retrieval:
    media transfer               0 -> 92
    item and container images   95
    subtitles                   99
    transfer acknowledged      100
"""

import threading
from typing import Callable


ProgressCallback = Callable[[float], None]

ACTIONS_REPLAYED = 1.0
FIRST_PASS_DONE = 2.0
SECOND_PASS_DONE = 3.0
RETRIEVAL_START = SECOND_PASS_DONE
RETRIEVAL_SPAN = 100.0 - RETRIEVAL_START

ITEM_MEDIA_SPAN = 92.0
ITEM_IMAGES_DONE = 95.0
ITEM_SUBTITLES_DONE = 99.0
COMPLETE = 100.0


def clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def scale(value: float, start: float, span: float) -> float:
    """Map value in [0, 100] onto [start, start + span]."""
    return start + clamp(value) * span / 100.0


def scaled(progress: ProgressCallback, start: float, span: float) -> ProgressCallback:
    """Reporter for a sub-phase occupying [start, start + span] of the parent."""
    def report(value: float) -> None:
        progress(scale(value, start, span))
    return report


def ignore_progress(value: float) -> None:
    pass


class MonotonicProgress:
    """
    Reporter wrapper that drops values lower than the last one reported.

    Attributes:
        value: Highest value reported so far.
    """

    def __init__(self, progress: ProgressCallback) -> None:
        self._progress = progress
        self._lock = threading.Lock()
        self.value = 0.0

    def __call__(self, value: float) -> None:
        value = clamp(value)
        with self._lock:
            if value < self.value:
                return
            self.value = value
        self._progress(value)
