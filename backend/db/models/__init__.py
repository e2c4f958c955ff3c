"""Database models for the agent workflow engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.agent import Agent
from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from db.models.execution import WorkflowExecution
from db.models.agent_execution import AgentExecutionRecord
from db.models.approval import ApprovalRequest
from db.models.schedule import WorkflowSchedule

__all__ = [
    "Agent",
    "Workflow",
    "WorkflowStep",
    "WorkflowExecution",
    "AgentExecutionRecord",
    "ApprovalRequest",
    "WorkflowSchedule",
]
