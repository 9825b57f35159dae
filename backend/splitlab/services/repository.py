"""Storage for experiments, assignments and events.

Thin SQLAlchemy layer. Storage errors are not caught here: they reach the
caller unchanged, and retries (if any) belong to the caller or the driver.
"""
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional, Tuple

from splitlab.models.assignment import Assignment
from splitlab.models.event import Event
from splitlab.models.experiment import Experiment


class ExperimentRepository:
    """Persistence operations the experiment engine needs."""

    def __init__(self, db: Session):
        self.db = db

    # Experiments

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        return self.db.get(Experiment, experiment_id)

    def put_experiment(self, experiment: Experiment) -> Experiment:
        """Insert or update an experiment and return the refreshed row."""
        self.db.add(experiment)
        self.db.commit()
        self.db.refresh(experiment)
        return experiment

    def delete_experiment(self, experiment: Experiment) -> None:
        self.db.delete(experiment)
        self.db.commit()

    def list_experiments(
        self,
        status: Optional[str] = None,
        type: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Experiment], int]:
        """
        List experiments, newest first.

        Returns:
            Tuple of (page of experiments, total matching count)
        """
        query = self.db.query(Experiment)
        if status:
            query = query.filter(Experiment.status == status)
        if type:
            query = query.filter(Experiment.type == type)

        total = query.count()
        experiments = query.order_by(
            Experiment.created_at.desc()
        ).offset(offset).limit(limit).all()

        return experiments, total

    # Assignments

    def find_assignment(self, experiment_id: str, visitor_id: str) -> Optional[Assignment]:
        return self.db.query(Assignment).filter(
            Assignment.experiment_id == experiment_id,
            Assignment.visitor_id == visitor_id
        ).first()

    def insert_assignment_if_absent(self, assignment: Assignment) -> Tuple[Assignment, bool]:
        """
        Atomically create an assignment unless one already exists.

        Relies on the unique (experiment_id, visitor_id) constraint: when a
        concurrent request inserted first, the conflict is rolled back and the
        stored row is returned instead, so every caller converges on it.

        Returns:
            Tuple of (stored assignment, True if this call inserted it)
        """
        try:
            self.db.add(assignment)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.find_assignment(assignment.experiment_id, assignment.visitor_id)
            if existing is None:
                # Conflict on something other than the visitor pair
                raise
            return existing, False

        self.db.refresh(assignment)
        return assignment, True

    def list_assignments(self, experiment_id: str) -> List[Assignment]:
        return self.db.query(Assignment).filter(
            Assignment.experiment_id == experiment_id
        ).all()

    # Events

    def insert_event(self, event: Event) -> Event:
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)
        return event

    def list_events(self, experiment_id: str) -> List[Event]:
        return self.db.query(Event).filter(
            Event.experiment_id == experiment_id
        ).all()
