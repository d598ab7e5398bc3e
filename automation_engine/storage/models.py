"""SQLAlchemy database models for the workflow automation engine."""

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, ForeignKeyConstraint, Index, Integer, JSON, String, Text,
)
from sqlalchemy.orm import relationship

from ..models.core import utcnow
from .database import Base


class WorkflowDefinitionModel(Base):
    """One saved version of a workflow definition."""
    __tablename__ = "workflow_definitions"

    id = Column(String, primary_key=True)
    version = Column(Integer, primary_key=True, default=1)
    name = Column(String, nullable=False)
    object_id = Column(String, nullable=False, index=True)
    trigger_type = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    definition = Column(JSON, nullable=False)  # Complete definition in wire format
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    runs = relationship("ExecutionRunModel", back_populates="definition")


class ExecutionRunModel(Base):
    """Database model for execution runs."""
    __tablename__ = "execution_runs"
    __table_args__ = (
        ForeignKeyConstraint(
            ["definition_id", "definition_version"],
            ["workflow_definitions.id", "workflow_definitions.version"],
        ),
        Index("ix_execution_runs_status_resume_at", "status", "resume_at"),
    )

    id = Column(String, primary_key=True)
    definition_id = Column(String, nullable=False, index=True)
    definition_version = Column(Integer, nullable=False)
    status = Column(String, nullable=False)  # pending, running, suspended, completed, failed, cancelled
    event = Column(JSON)
    variables = Column(JSON)
    suspension = Column(JSON)
    resume_at = Column(DateTime)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text)
    started_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime)

    definition = relationship("WorkflowDefinitionModel", back_populates="runs")
    results = relationship(
        "ActionResultModel",
        back_populates="run",
        order_by="ActionResultModel.sequence",
        cascade="all, delete-orphan",
    )


class ActionResultModel(Base):
    """Append-only per-node outcome of a run."""
    __tablename__ = "action_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String, ForeignKey("execution_runs.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    node_id = Column(String, nullable=False)
    action_type = Column(String)
    status = Column(String, nullable=False)  # succeeded, failed, skipped
    output = Column(JSON)
    error = Column(Text)
    error_details = Column(JSON)
    attempts = Column(Integer, default=1)
    iteration = Column(JSON)
    timestamp = Column(DateTime, default=utcnow)

    run = relationship("ExecutionRunModel", back_populates="results")
