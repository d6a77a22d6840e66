"""
timebox_batch.steppers -- Stepper protocol, registry, and the combinatorial
iteration stepper.
"""

from timebox_batch.steppers.base import (
    JobDefinition,
    JobRegistry,
    Stepper,
    StepperBuilder,
)
from timebox_batch.steppers.iteration import (
    CombinatorialStepper,
    IterationSpec,
    Level,
    iteration_job,
)

__all__ = [
    "CombinatorialStepper",
    "IterationSpec",
    "JobDefinition",
    "JobRegistry",
    "Level",
    "Stepper",
    "StepperBuilder",
    "iteration_job",
]
