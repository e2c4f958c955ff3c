"""Constants and enums for the agent workflow engine."""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Status of a single step within an execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    WAITING = "waiting"  # Suspended on an approval


class StepType(str, Enum):
    """Workflow step type."""

    AGENT_EXECUTION = "AGENT_EXECUTION"
    APPROVAL = "APPROVAL"
    CONDITION = "CONDITION"
    PARALLEL_GROUP = "PARALLEL_GROUP"


class TriggerType(str, Enum):
    """How a workflow execution was triggered."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    EVENT = "event"


class ExecutionMode(str, Enum):
    """Whether the triggering caller waits for the execution to finish."""

    SYNC = "sync"
    ASYNC = "async"


class InterfaceType(str, Enum):
    """How a workflow is presented to end users."""

    FORM = "form"
    CHAT = "chat"
    API = "api"


class ApprovalStatus(str, Enum):
    """Approval request status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


class OnTimeout(str, Enum):
    """Outcome applied when an approval request times out."""

    FAIL = "fail"
    APPROVE = "approve"
    REJECT = "reject"


class OnReject(str, Enum):
    """Outcome applied when an approval request is rejected."""

    FAIL = "fail"
    SKIP = "skip"


class AgentRunStatus(str, Enum):
    """Status of one agent step attempt."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_EXECUTION_STATUSES = (ExecutionStatus.COMPLETED.value, ExecutionStatus.FAILED.value)
