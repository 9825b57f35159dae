"""Experiment model."""
from sqlalchemy import Column, String, Text, Integer, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from splitlab.database import Base, JSONType


class Experiment(Base):
    """A/B experiment configuration."""

    __tablename__ = "experiments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False)
    description = Column(Text)
    hypothesis = Column(Text)
    type = Column(String(20), nullable=False, default="ab")
    status = Column(String(20), nullable=False, default="draft", index=True)

    # Ordered list: [{"id": "control", "name": "Control", "weight": 50, "is_control": true, ...}]
    variants = Column(JSONType, nullable=False, default=list)
    targeting = Column(JSONType, nullable=False, default=dict)
    metrics = Column(JSONType, nullable=False, default=dict)
    traffic_allocation = Column(Integer, nullable=False, default=100)

    started_at = Column(DateTime)
    ended_at = Column(DateTime)
    winner_variant_id = Column(String(100))

    created_by = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    assignments = relationship("Assignment", back_populates="experiment", cascade="all, delete-orphan")
    events = relationship("Event", back_populates="experiment", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Experiment {self.id} status={self.status}>"
