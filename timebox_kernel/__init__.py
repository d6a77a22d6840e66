"""
Timebox Kernel -- shared infrastructure for resumable batch execution.

Provides:
- Injectable clocks (deterministic time in tests)
- Structured JSON logging
- Typed exception hierarchy with machine-readable codes
- SQLAlchemy base classes and engine/session helpers
- The persisted key-value store that survives invocation boundaries
"""

__version__ = "0.1.0"
