"""
timebox_batch -- resumable, time-boxed execution core.

Drives pausable steppers inside a wall-clock budget, persists checkpoints
between invocations, and resumes suspended jobs from one-shot triggers.
Transient faults inside a combination are handled by the RetryEngine.

Architecture:
    timebox_batch/ is a top-level package.  Nothing in timebox_kernel/ or
    timebox_config/ imports from it.

Invariants:
    - Odometer order, reproduced exactly across pause/resume
    - One Running invocation per job name (compare-and-set guard)
    - Checkpoints are written through on every advance
    - Completed and Failed jobs hold no checkpoint and no trigger
    - Failures are never auto-resumed; retries handle transient faults only
"""
