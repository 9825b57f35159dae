"""Initialize database with a sample experiment."""
import sys
from sqlalchemy.orm import Session
from splitlab.database import SessionLocal, engine, Base
from splitlab.models import Experiment
from splitlab.schemas.experiment import ExperimentCreate, Variant, TargetingRules, Metrics
from splitlab.services.experiments import ExperimentService


def init_database():
    """Create tables and a sample draft experiment."""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()

    try:
        existing = db.query(Experiment).first()
        if existing:
            print("✓ Database already initialized")
            return

        print("\nCreating sample experiment...")
        service = ExperimentService(db)
        experiment = service.create_experiment(ExperimentCreate(
            name="Pricing page headline",
            description="Benefit-led vs feature-led headline on /pricing",
            hypothesis="A benefit-led headline lifts plan upgrades by 5% or more",
            type="ab",
            variants=[
                Variant(id="control", name="Feature-led", weight=50, is_control=True),
                Variant(id="benefit", name="Benefit-led", weight=50),
            ],
            targeting=TargetingRules(url_patterns=["/pricing*"]),
            metrics=Metrics(minimum_sample_size=2000, minimum_effect_size=0.05, confidence_level=0.95),
            traffic_allocation=100
        ))
        print(f"✓ Created experiment: {experiment.name} ({experiment.id})")

        print("\n" + "="*50)
        print("✓ Database initialized successfully!")
        print("="*50)
        print("\nStart it with:")
        print(f"  curl -X POST http://localhost:8000/experiments/{experiment.id}/start")
        print("\n" + "="*50)

    except Exception as e:
        print(f"✗ Error initializing database: {e}")
        db.rollback()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    init_database()
