"""
timebox_batch.jobs -- reusable JobDefinition builders.
"""

from timebox_batch.jobs.grid import GRID_PARAM, grid_job

__all__ = [
    "GRID_PARAM",
    "grid_job",
]
