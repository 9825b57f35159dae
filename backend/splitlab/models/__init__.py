"""Database models."""
from splitlab.models.experiment import Experiment
from splitlab.models.assignment import Assignment
from splitlab.models.event import Event, CONVERSION_EVENT

__all__ = ["Experiment", "Assignment", "Event", "CONVERSION_EVENT"]
