"""Event model."""
from sqlalchemy import Column, String, Float, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from splitlab.database import Base, JSONType

CONVERSION_EVENT = "conversion"


class Event(Base):
    """Append-only event attributed to a variant of an experiment."""

    __tablename__ = "experiment_events"
    __table_args__ = (
        Index("ix_experiment_events_variant", "experiment_id", "variant_id"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    experiment_id = Column(String(36), ForeignKey("experiments.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column(String(100), nullable=False)
    visitor_id = Column(String(255), nullable=False)
    user_id = Column(String(255))
    event_type = Column(String(100), nullable=False, index=True)
    event_value = Column(Float)
    extra_data = Column("metadata", JSONType, default=dict)  # "metadata" is reserved on declarative classes
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    experiment = relationship("Experiment", back_populates="events")

    def __repr__(self):
        return f"<Event {self.id} type={self.event_type} variant={self.variant_id}>"
