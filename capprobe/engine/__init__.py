"""Capacity probing engine: attempts, experiments and step sequencing."""

from .attempt import Attempt, AttemptSummary, CpuStats
from .experiment import AttemptOutcome, Experiment, ExperimentRow
from .sequencer import StepSequencer
from .state import AttemptHandlers, Decision, Stage, StepAction, StepTask

__all__ = [
    "Attempt",
    "AttemptSummary",
    "CpuStats",
    "Experiment",
    "ExperimentRow",
    "AttemptOutcome",
    "StepSequencer",
    "AttemptHandlers",
    "Decision",
    "Stage",
    "StepAction",
    "StepTask",
]
