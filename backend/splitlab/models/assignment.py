"""Assignment model."""
from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from splitlab.database import Base, JSONType


class Assignment(Base):
    """Durable record of the variant a visitor was bucketed into."""

    __tablename__ = "experiment_assignments"
    __table_args__ = (
        # One assignment per visitor per experiment; insert races resolve on this
        UniqueConstraint("experiment_id", "visitor_id", name="uq_assignment_experiment_visitor"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    experiment_id = Column(String(36), ForeignKey("experiments.id", ondelete="CASCADE"), nullable=False, index=True)
    visitor_id = Column(String(255), nullable=False)
    user_id = Column(String(255), index=True)
    variant_id = Column(String(100), nullable=False)
    context = Column(JSONType, default=dict)  # url, device_type, browser, country, ...
    assigned_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    experiment = relationship("Experiment", back_populates="assignments")

    def __repr__(self):
        return f"<Assignment {self.experiment_id}:{self.visitor_id} variant={self.variant_id}>"
