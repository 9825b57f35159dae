"""Experimentation service for A/B testing."""
import structlog
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from splitlab.config import get_settings
from splitlab.models.assignment import Assignment
from splitlab.models.event import Event, CONVERSION_EVENT
from splitlab.models.experiment import Experiment
from splitlab.schemas.assignment import AssignmentResult
from splitlab.schemas.experiment import (
    AssignmentContext,
    ExperimentCreate,
    ExperimentList,
    ExperimentRead,
    ExperimentUpdate,
    Variant,
)
from splitlab.schemas.results import ExperimentResults
from splitlab.services import hooks as lifecycle
from splitlab.services.bucketing import in_allocation, select_variant
from splitlab.services.hooks import HookRegistry
from splitlab.services.repository import ExperimentRepository
from splitlab.services.statistics import build_results
from splitlab.services.targeting import context_as_dict, satisfies

logger = structlog.get_logger()

# Allowed status changes: current status -> reachable statuses
STATUS_TRANSITIONS = {
    "draft": {"running"},
    "running": {"paused", "completed"},
    "paused": {"running", "completed"},
    "completed": {"archived"},
    "archived": set(),
}

READ_ONLY_STATUSES = {"completed", "archived"}

# Update fields that may be cleared by sending null
NULLABLE_FIELDS = {"description", "hypothesis"}

# JSON blocks updated key by key instead of replaced
MERGED_FIELDS = {"targeting", "metrics"}


class ExperimentError(Exception):
    """Base class for experiment engine errors."""
    pass


class ExperimentNotFound(ExperimentError):
    """Raised when an experiment id does not exist."""

    def __init__(self, experiment_id: str):
        self.experiment_id = experiment_id
        super().__init__(f"Experiment not found: {experiment_id}")


class ExperimentValidationError(ExperimentError, ValueError):
    """Raised when an experiment definition or request is invalid."""
    pass


class InvalidStatusTransition(ExperimentValidationError):
    """Raised when a lifecycle change is not allowed from the current status."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current} to {target}")


def validate_variants(variants: List[Variant]) -> List[Variant]:
    """
    Check variant rules and fill in missing ids.

    Args:
        variants: Variants in declared order

    Returns:
        Variants with ids (`variant_<index>` where none was given)

    Raises:
        ExperimentValidationError: If weights don't sum to 100, there isn't
            exactly one control, there are fewer than two variants, or ids
            are duplicated
    """
    if len(variants) < 2:
        raise ExperimentValidationError("An experiment needs at least two variants")

    if sum(v.weight for v in variants) != 100:
        raise ExperimentValidationError("Variant weights must sum to 100")

    if sum(1 for v in variants if v.is_control) != 1:
        raise ExperimentValidationError("Exactly one variant must be marked as control")

    validated = [
        v if v.id else v.model_copy(update={"id": f"variant_{i}"})
        for i, v in enumerate(variants)
    ]

    ids = [v.id for v in validated]
    if len(set(ids)) != len(ids):
        raise ExperimentValidationError("Variant ids must be unique")

    return validated


class ExperimentService:
    """Service for managing A/B experiments."""

    def __init__(self, db: Session, hooks: Optional[HookRegistry] = None):
        self.db = db
        self.repository = ExperimentRepository(db)
        self.hooks = hooks if hooks is not None else HookRegistry()

    # ------------------------------------------------------------------
    # Experiment management
    # ------------------------------------------------------------------

    def create_experiment(
        self,
        data: ExperimentCreate,
        created_by: Optional[str] = None
    ) -> ExperimentRead:
        """
        Create a new experiment in draft status.

        Args:
            data: Experiment definition
            created_by: Optional owner identifier

        Returns:
            Created experiment

        Raises:
            ExperimentValidationError: If the variants are invalid
        """
        variants = validate_variants(data.variants)

        experiment = Experiment(
            name=data.name,
            description=data.description,
            hypothesis=data.hypothesis,
            type=data.type,
            status="draft",
            variants=[v.model_dump() for v in variants],
            targeting=data.targeting.model_dump(),
            metrics=data.metrics.model_dump(),
            traffic_allocation=data.traffic_allocation,
            created_by=created_by
        )
        experiment = self.repository.put_experiment(experiment)

        logger.info(
            "experiment_created",
            experiment_id=experiment.id,
            name=experiment.name,
            type=experiment.type,
            variant_count=len(variants)
        )
        return ExperimentRead.model_validate(experiment)

    def get_experiment(self, experiment_id: str) -> Optional[ExperimentRead]:
        """Get an experiment by id, or None."""
        experiment = self.repository.get_experiment(experiment_id)
        return ExperimentRead.model_validate(experiment) if experiment else None

    def update_experiment(self, experiment_id: str, changes: ExperimentUpdate) -> ExperimentRead:
        """
        Apply a partial update.

        Weight and targeting changes to a running experiment only affect
        visitors assigned from now on; stored assignments never change.

        `targeting` and `metrics` are merged key by key into the stored
        blocks, so `{"metrics": {"confidence_level": 0.99}}` keeps the stored
        sample and effect sizes. Send an empty list to clear a targeting filter.

        Raises:
            ExperimentNotFound: If the experiment doesn't exist
            ExperimentValidationError: If the experiment is completed or
                archived, or the new variants are invalid
        """
        experiment = self._load(experiment_id)

        if experiment.status in READ_ONLY_STATUSES:
            raise ExperimentValidationError(
                f"Experiment is {experiment.status} and can no longer be modified"
            )

        updated_fields = []
        for field, value in changes.model_dump(exclude_unset=True).items():
            if value is None and field not in NULLABLE_FIELDS:
                continue
            if field == "variants":
                value = [v.model_dump() for v in validate_variants(changes.variants)]
            elif field in MERGED_FIELDS:
                value = {**(getattr(experiment, field) or {}), **value}
            setattr(experiment, field, value)
            updated_fields.append(field)

        experiment = self.repository.put_experiment(experiment)

        logger.info(
            "experiment_updated",
            experiment_id=experiment.id,
            status=experiment.status,
            changes=updated_fields
        )
        return ExperimentRead.model_validate(experiment)

    def start_experiment(self, experiment_id: str) -> ExperimentRead:
        """Start (or resume) an experiment."""
        return self._transition(experiment_id, "running", lifecycle.EXPERIMENT_STARTED)

    def pause_experiment(self, experiment_id: str) -> ExperimentRead:
        """Pause a running experiment. Paused experiments assign nobody."""
        return self._transition(experiment_id, "paused", lifecycle.EXPERIMENT_PAUSED)

    def end_experiment(self, experiment_id: str) -> ExperimentRead:
        """Complete an experiment and record its winner, if any."""
        return self._transition(experiment_id, "completed", lifecycle.EXPERIMENT_COMPLETED)

    def archive_experiment(self, experiment_id: str) -> ExperimentRead:
        """Archive a completed experiment."""
        return self._transition(experiment_id, "archived", lifecycle.EXPERIMENT_ARCHIVED)

    def delete_experiment(self, experiment_id: str) -> None:
        """
        Delete a draft experiment.

        Raises:
            ExperimentNotFound: If the experiment doesn't exist
            ExperimentValidationError: If it has left draft status
        """
        experiment = self._load(experiment_id)
        if experiment.status != "draft":
            raise ExperimentValidationError("Only draft experiments can be deleted")

        self.repository.delete_experiment(experiment)
        logger.info("experiment_deleted", experiment_id=experiment_id)

    def list_experiments(
        self,
        status: Optional[str] = None,
        type: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> ExperimentList:
        """List experiments, newest first, optionally filtered by status and type."""
        settings = get_settings()
        limit = min(limit or settings.experiments_page_size, settings.max_experiments_page_size)
        offset = max(offset, 0)

        experiments, total = self.repository.list_experiments(
            status=status, type=type, limit=limit, offset=offset
        )
        return ExperimentList(
            experiments=[ExperimentRead.model_validate(e) for e in experiments],
            total=total,
            limit=limit,
            offset=offset
        )

    # ------------------------------------------------------------------
    # Variant assignment
    # ------------------------------------------------------------------

    def get_variant_assignment(
        self,
        experiment_id: str,
        visitor_id: str,
        user_id: Optional[str] = None,
        context: Optional[AssignmentContext] = None
    ) -> Optional[AssignmentResult]:
        """
        Get or create a visitor's variant for an experiment.

        Returns None ("no treatment") when the experiment isn't running, the
        visitor doesn't match the targeting rules, or falls outside the
        traffic allocation. Callers treat None like the control experience.

        Once assigned, a visitor keeps the same variant for the lifetime of
        the experiment, even if weights or variant order change later.

        Args:
            experiment_id: Experiment identifier
            visitor_id: Stable visitor identifier used for bucketing
            user_id: Optional logged-in user identifier
            context: Request attributes for targeting

        Returns:
            AssignmentResult, or None if the visitor doesn't qualify

        Raises:
            ExperimentNotFound: If the experiment doesn't exist

        Example:
            >>> service = ExperimentService(db)
            >>> result = service.get_variant_assignment(exp_id, "visitor_123")
            >>> result.variant.id if result else "control experience"
        """
        experiment = self.require_experiment(experiment_id)

        if experiment.status != "running":
            return None

        if not satisfies(experiment.targeting, context):
            logger.debug("assignment_targeting_mismatch", experiment_id=experiment_id, visitor_id=visitor_id)
            return None

        if not in_allocation(visitor_id, experiment.traffic_allocation):
            logger.debug("assignment_outside_allocation", experiment_id=experiment_id, visitor_id=visitor_id)
            return None

        existing = self.repository.find_assignment(experiment_id, visitor_id)
        if existing:
            return AssignmentResult(
                variant=self._stored_variant(experiment, existing.variant_id),
                is_new=False
            )

        variant = select_variant(visitor_id, experiment.variants)
        stored, is_new = self.repository.insert_assignment_if_absent(Assignment(
            experiment_id=experiment_id,
            visitor_id=visitor_id,
            user_id=user_id,
            variant_id=variant.id,
            context=context_as_dict(context)
        ))

        if is_new:
            logger.info(
                "variant_assigned",
                experiment_id=experiment_id,
                visitor_id=visitor_id,
                variant_id=stored.variant_id
            )
        else:
            logger.info(
                "assignment_conflict_resolved",
                experiment_id=experiment_id,
                visitor_id=visitor_id,
                variant_id=stored.variant_id
            )

        return AssignmentResult(
            variant=self._stored_variant(experiment, stored.variant_id),
            is_new=is_new
        )

    # ------------------------------------------------------------------
    # Event tracking
    # ------------------------------------------------------------------

    def track_event(
        self,
        experiment_id: str,
        variant_id: str,
        visitor_id: str,
        event_type: str,
        user_id: Optional[str] = None,
        event_value: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Event:
        """
        Record an event for a variant of an experiment.

        Raises:
            ExperimentNotFound: If the experiment doesn't exist
            ExperimentValidationError: If the variant isn't part of the experiment
        """
        experiment = self.require_experiment(experiment_id)
        if experiment.get_variant(variant_id) is None:
            raise ExperimentValidationError(
                f"Variant {variant_id} is not part of experiment {experiment_id}"
            )

        return self._record(experiment_id, variant_id, visitor_id, event_type, user_id, event_value, metadata)

    def track_conversion(
        self,
        experiment_id: str,
        visitor_id: str,
        event_value: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[Event]:
        """
        Record a conversion against the visitor's existing assignment.

        A conversion without an assignment is discarded (and logged), never
        attributed to a made-up variant.

        Returns:
            The recorded event, or None if the visitor has no assignment

        Raises:
            ExperimentNotFound: If the experiment doesn't exist
        """
        self.require_experiment(experiment_id)

        assignment = self.repository.find_assignment(experiment_id, visitor_id)
        if not assignment:
            logger.warning(
                "conversion_without_assignment",
                experiment_id=experiment_id,
                visitor_id=visitor_id
            )
            return None

        return self._record(
            experiment_id,
            assignment.variant_id,
            visitor_id,
            CONVERSION_EVENT,
            assignment.user_id,
            event_value,
            metadata
        )

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def get_experiment_results(self, experiment_id: str) -> ExperimentResults:
        """
        Compute results from every stored assignment and event.

        Always fresh: nothing is cached between calls.

        Raises:
            ExperimentNotFound: If the experiment doesn't exist
        """
        experiment = self.require_experiment(experiment_id)
        return build_results(
            experiment,
            self.repository.list_assignments(experiment_id),
            self.repository.list_events(experiment_id)
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def require_experiment(self, experiment_id: str) -> ExperimentRead:
        """Get an experiment by id or raise ExperimentNotFound."""
        return ExperimentRead.model_validate(self._load(experiment_id))

    def _load(self, experiment_id: str) -> Experiment:
        experiment = self.repository.get_experiment(experiment_id)
        if experiment is None:
            raise ExperimentNotFound(experiment_id)
        return experiment

    def _transition(self, experiment_id: str, target: str, hook_event: str) -> ExperimentRead:
        experiment = self._load(experiment_id)
        current = experiment.status

        if target not in STATUS_TRANSITIONS.get(current, set()):
            raise InvalidStatusTransition(current, target)

        now = datetime.utcnow()
        experiment.status = target

        if target == "running" and experiment.started_at is None:
            experiment.started_at = now

        if target == "completed":
            experiment.ended_at = now
            results = build_results(
                ExperimentRead.model_validate(experiment),
                self.repository.list_assignments(experiment_id),
                self.repository.list_events(experiment_id),
                now=now
            )
            experiment.winner_variant_id = results.winner

        experiment = self.repository.put_experiment(experiment)
        updated = ExperimentRead.model_validate(experiment)

        logger.info(
            "experiment_status_changed",
            experiment_id=experiment_id,
            from_status=current,
            to_status=target,
            winner_variant_id=updated.winner_variant_id
        )

        self.hooks.dispatch(hook_event, updated)
        return updated

    @staticmethod
    def _stored_variant(experiment: ExperimentRead, variant_id: str) -> Variant:
        # A stored assignment wins even if its variant was since removed
        variant = experiment.get_variant(variant_id)
        if variant is None:
            variant = Variant(id=variant_id, name=variant_id, weight=0, is_control=False)
        return variant

    def _record(
        self,
        experiment_id: str,
        variant_id: str,
        visitor_id: str,
        event_type: str,
        user_id: Optional[str],
        event_value: Optional[float],
        metadata: Optional[Dict[str, Any]]
    ) -> Event:
        event = self.repository.insert_event(Event(
            experiment_id=experiment_id,
            variant_id=variant_id,
            visitor_id=visitor_id,
            user_id=user_id,
            event_type=event_type,
            event_value=event_value,
            extra_data=metadata or {}
        ))

        logger.info(
            "experiment_event_tracked",
            experiment_id=experiment_id,
            variant_id=variant_id,
            event_type=event_type
        )
        return event
