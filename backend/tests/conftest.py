"""Shared fixtures."""
import os

# Must be set before splitlab.database creates its engine
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from sqlalchemy.orm import Session

from splitlab.schemas.experiment import ExperimentCreate, Metrics, TargetingRules, Variant
from splitlab.services.experiments import ExperimentService
from splitlab.services.hooks import HookRegistry


@pytest.fixture
def db():
    """Create test database session."""
    from splitlab.database import SessionLocal, engine, Base
    import splitlab.models  # noqa: F401

    # Create tables
    Base.metadata.create_all(bind=engine)

    # Create session
    session = SessionLocal()

    yield session

    # Cleanup
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def hooks() -> HookRegistry:
    """Fresh hook registry per test."""
    return HookRegistry()


@pytest.fixture
def service(db: Session, hooks: HookRegistry) -> ExperimentService:
    return ExperimentService(db, hooks=hooks)


@pytest.fixture
def experiment_payload():
    """Factory for a valid two-variant experiment definition."""

    def _payload(**overrides) -> ExperimentCreate:
        data = {
            "name": "Checkout button copy",
            "variants": [
                Variant(id="control", name="Control", weight=50, is_control=True),
                Variant(id="treatment", name="Treatment", weight=50),
            ],
            "targeting": TargetingRules(),
            "metrics": Metrics(minimum_sample_size=100, minimum_effect_size=0.05, confidence_level=0.95),
            "traffic_allocation": 100,
        }
        data.update(overrides)
        return ExperimentCreate(**data)

    return _payload


@pytest.fixture
def running_experiment(service: ExperimentService, experiment_payload):
    """A started 50/50 experiment open to all traffic."""
    experiment = service.create_experiment(experiment_payload())
    return service.start_experiment(experiment.id)
