"""
Persisted key layout for scheduler state.

Every job key is namespaced by job name; trigger links are namespaced by
both job name and trigger id so either side can be found from the other.
"""

from __future__ import annotations

JOB_PREFIX = "job:"
TRIGGER_PREFIX = "trigger:"


def lifecycle_key(job_name: str) -> str:
    return f"{JOB_PREFIX}{job_name}:lifecycle"


def checkpoint_key(job_name: str) -> str:
    return f"{JOB_PREFIX}{job_name}:checkpoint"


def progress_key(job_name: str) -> str:
    return f"{JOB_PREFIX}{job_name}:progress"


def type_key(job_name: str) -> str:
    return f"{JOB_PREFIX}{job_name}:type"


def params_key(job_name: str) -> str:
    return f"{JOB_PREFIX}{job_name}:params"


def trigger_key(job_name: str) -> str:
    """Job name -> pending trigger id."""
    return f"{JOB_PREFIX}{job_name}:trigger"


def trigger_job_key(trigger_id: str) -> str:
    """Trigger id -> job name."""
    return f"{TRIGGER_PREFIX}{trigger_id}:job"


def job_state_keys(job_name: str) -> tuple[str, ...]:
    """Every key ``reset_state()`` deletes, trigger links excluded."""
    return (
        lifecycle_key(job_name),
        checkpoint_key(job_name),
        progress_key(job_name),
        type_key(job_name),
        params_key(job_name),
    )


def trigger_id_from_key(key: str) -> str | None:
    """Inverse of ``trigger_job_key``; None for any other key."""
    suffix = ":job"
    if not (key.startswith(TRIGGER_PREFIX) and key.endswith(suffix)):
        return None
    return key[len(TRIGGER_PREFIX):-len(suffix)] or None
