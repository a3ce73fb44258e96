"""
Common type hints used across the trajclust library.
"""

from enum import Enum, IntEnum
from typing import Callable, Optional


class FrameStatus(IntEnum):
    """Per-frame clustering status, stored as int8 in status arrays."""

    UNASSIGNED = 0
    NOISE = 1
    IN_CLUSTER = 2


class SievePolicy(str, Enum):
    """How sieved (ignored) frames are restored after clustering."""

    TO_CENTROID = "to_centroid"
    TO_FRAME = "to_frame"


# progress_callback(message, current, total)
ProgressCallback = Optional[Callable[[str, int, int], None]]
