"""Experiment endpoints.

Thin HTTP adapter over ExperimentService. Engine errors are translated to
HTTP responses by the exception handlers registered in `splitlab.main`.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session
from typing import Optional

from splitlab.database import get_db
from splitlab.middleware.logging import get_logger
from splitlab.schemas.assignment import (
    AssignmentRequest,
    AssignmentResponse,
    ConversionRequest,
    EventResponse,
    TrackEventRequest,
)
from splitlab.schemas.experiment import (
    ExperimentCreate,
    ExperimentList,
    ExperimentRead,
    ExperimentStatus,
    ExperimentType,
    ExperimentUpdate,
)
from splitlab.schemas.results import ExperimentResults
from splitlab.services.experiments import ExperimentService

router = APIRouter(prefix="/experiments")
logger = get_logger()


def get_experiment_service(
    request: Request,
    db: Session = Depends(get_db)
) -> ExperimentService:
    """Dependency that builds a service bound to the request's session and the app's hooks."""
    return ExperimentService(db, hooks=request.app.state.hooks)


@router.post("", response_model=ExperimentRead, status_code=201)
async def create_experiment(
    payload: ExperimentCreate,
    service: ExperimentService = Depends(get_experiment_service)
):
    """Create an experiment in draft status."""
    return service.create_experiment(payload)


@router.get("", response_model=ExperimentList)
async def list_experiments(
    status: Optional[ExperimentStatus] = None,
    type: Optional[ExperimentType] = None,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    service: ExperimentService = Depends(get_experiment_service)
):
    """List experiments, newest first."""
    return service.list_experiments(status=status, type=type, limit=limit, offset=offset)


@router.get("/{experiment_id}", response_model=ExperimentRead)
async def get_experiment(
    experiment_id: str,
    service: ExperimentService = Depends(get_experiment_service)
):
    experiment = service.get_experiment(experiment_id)
    if not experiment:
        raise HTTPException(status_code=404, detail="Experiment not found")
    return experiment


@router.patch("/{experiment_id}", response_model=ExperimentRead)
async def update_experiment(
    experiment_id: str,
    changes: ExperimentUpdate,
    service: ExperimentService = Depends(get_experiment_service)
):
    """
    Update an experiment.

    Changes to a running experiment apply to new visitors only. Reordering
    variants moves bucket boundaries for visitors not yet assigned.
    `targeting` and `metrics` are merged into the stored blocks; fields left
    out keep their stored values.
    """
    return service.update_experiment(experiment_id, changes)


@router.delete("/{experiment_id}", status_code=204)
async def delete_experiment(
    experiment_id: str,
    service: ExperimentService = Depends(get_experiment_service)
):
    """Delete a draft experiment."""
    service.delete_experiment(experiment_id)
    return Response(status_code=204)


@router.post("/{experiment_id}/start", response_model=ExperimentRead)
async def start_experiment(
    experiment_id: str,
    service: ExperimentService = Depends(get_experiment_service)
):
    return service.start_experiment(experiment_id)


@router.post("/{experiment_id}/pause", response_model=ExperimentRead)
async def pause_experiment(
    experiment_id: str,
    service: ExperimentService = Depends(get_experiment_service)
):
    return service.pause_experiment(experiment_id)


@router.post("/{experiment_id}/end", response_model=ExperimentRead)
async def end_experiment(
    experiment_id: str,
    service: ExperimentService = Depends(get_experiment_service)
):
    return service.end_experiment(experiment_id)


@router.post("/{experiment_id}/archive", response_model=ExperimentRead)
async def archive_experiment(
    experiment_id: str,
    service: ExperimentService = Depends(get_experiment_service)
):
    return service.archive_experiment(experiment_id)


@router.post("/{experiment_id}/assignments", response_model=AssignmentResponse)
async def get_variant_assignment(
    experiment_id: str,
    assignment_request: AssignmentRequest,
    service: ExperimentService = Depends(get_experiment_service)
):
    """
    Resolve the variant a visitor should see.

    `assigned: false` means the visitor doesn't qualify (experiment not
    running, targeting mismatch or outside the traffic allocation) and should
    get the default experience.
    """
    result = service.get_variant_assignment(
        experiment_id,
        assignment_request.visitor_id,
        user_id=assignment_request.user_id,
        context=assignment_request.context
    )

    if result is None:
        return AssignmentResponse(
            experiment_id=experiment_id,
            visitor_id=assignment_request.visitor_id,
            assigned=False
        )

    return AssignmentResponse(
        experiment_id=experiment_id,
        visitor_id=assignment_request.visitor_id,
        assigned=True,
        variant=result.variant,
        is_new=result.is_new
    )


@router.post("/{experiment_id}/events", response_model=EventResponse)
async def track_event(
    experiment_id: str,
    event_request: TrackEventRequest,
    service: ExperimentService = Depends(get_experiment_service)
):
    event = service.track_event(
        experiment_id,
        event_request.variant_id,
        event_request.visitor_id,
        event_request.event_type,
        user_id=event_request.user_id,
        event_value=event_request.event_value,
        metadata=event_request.metadata
    )
    return EventResponse(recorded=True, event_id=event.id, variant_id=event.variant_id)


@router.post("/{experiment_id}/conversions", response_model=EventResponse)
async def track_conversion(
    experiment_id: str,
    conversion_request: ConversionRequest,
    service: ExperimentService = Depends(get_experiment_service)
):
    """Record a conversion for the visitor's existing assignment."""
    event = service.track_conversion(
        experiment_id,
        conversion_request.visitor_id,
        event_value=conversion_request.event_value,
        metadata=conversion_request.metadata
    )

    if event is None:
        return EventResponse(recorded=False, message="No assignment found for visitor")

    return EventResponse(recorded=True, event_id=event.id, variant_id=event.variant_id)


@router.get("/{experiment_id}/results", response_model=ExperimentResults)
async def get_experiment_results(
    experiment_id: str,
    service: ExperimentService = Depends(get_experiment_service)
):
    """Per-variant rates, confidence intervals, significance and recommendation."""
    results = service.get_experiment_results(experiment_id)

    logger.info(
        "experiment_results_computed",
        experiment_id=experiment_id,
        sample_size=results.sample_size,
        winner=results.winner
    )
    return results
