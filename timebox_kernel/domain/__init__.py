"""
Pure domain layer of the kernel.

Nothing here performs I/O except ``SystemClock``, the one sanctioned
boundary for reading wall-clock time.
"""

from timebox_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SteppingClock,
    SystemClock,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SteppingClock",
    "SystemClock",
]
