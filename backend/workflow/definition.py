"""Immutable, validated views of workflow definitions.

The ORM rows in db.models are what the API edits; the engine runs on the
frozen dataclasses below, built once per execution so that a definition
edited mid-run cannot change the steps of an execution already in flight.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Optional

from app.config import get_settings
from core.constants import (
    ExecutionMode,
    InterfaceType,
    OnReject,
    OnTimeout,
    StepType,
    TriggerType,
)
from core.exceptions import ConfigurationError
from workflow.retry_strategies import RetryStrategy


RESERVED_VARIABLES = frozenset({"trigger"})


# ─── Approval policy ───────────────────────────────────────────

@dataclass(frozen=True)
class ApprovalPolicy:
    """What an APPROVAL step waits for and what happens when it resolves."""

    required_role: Optional[str] = None
    timeout_seconds: Optional[float] = None
    on_timeout: Optional[OnTimeout] = None
    on_reject: OnReject = OnReject.FAIL

    @classmethod
    def from_dict(cls, config: Optional[dict], step_name: str = "") -> "ApprovalPolicy":
        config = config or {}
        timeout = config.get("timeout_seconds")
        on_timeout = config.get("on_timeout")

        try:
            on_timeout = OnTimeout(on_timeout) if on_timeout is not None else None
            on_reject = OnReject(config.get("on_reject", OnReject.FAIL.value))
        except ValueError as e:
            raise ConfigurationError(f"Step '{step_name}': {e}")

        if timeout is not None:
            try:
                timeout = float(timeout)
            except (TypeError, ValueError):
                raise ConfigurationError(f"Step '{step_name}': approval timeout_seconds must be a number")
            if timeout <= 0:
                raise ConfigurationError(f"Step '{step_name}': approval timeout_seconds must be positive")
            if on_timeout is None:
                raise ConfigurationError(
                    f"Step '{step_name}': on_timeout is required when an approval timeout is set"
                )

        return cls(
            required_role=config.get("required_role"),
            timeout_seconds=timeout,
            on_timeout=on_timeout,
            on_reject=on_reject,
        )

    def to_dict(self) -> dict:
        return {
            "required_role": self.required_role,
            "timeout_seconds": self.timeout_seconds,
            "on_timeout": self.on_timeout.value if self.on_timeout else None,
            "on_reject": self.on_reject.value,
        }


# ─── Steps ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class StepDefinition:
    """One step of a workflow as the engine sees it."""

    id: str
    name: str
    order: int
    step_type: StepType
    agent_id: Optional[str] = None
    input_mapping: Any = None
    output_variable: Optional[str] = None
    condition: Optional[str] = None
    depends_on: tuple[int, ...] = ()
    retry: RetryStrategy = field(default_factory=RetryStrategy.none)
    timeout_seconds: Optional[float] = None
    approval: Optional[ApprovalPolicy] = None
    members: tuple["StepDefinition", ...] = ()

    @classmethod
    def from_dict(cls, data: dict, order: Optional[int] = None) -> "StepDefinition":
        """Build a step from its stored shape (ORM column names)."""
        name = data.get("name") or f"step-{order if order is not None else data.get('step_order')}"
        step_order = data.get("step_order", order)
        if step_order is None:
            raise ConfigurationError(f"Step '{name}' has no order")

        try:
            step_type = StepType(data.get("step_type"))
        except ValueError:
            raise ConfigurationError(f"Step '{name}' has unknown type {data.get('step_type')!r}")

        try:
            retry = RetryStrategy.from_dict(data.get("retry_config"))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Step '{name}': invalid retry_config: {e}")

        output_variable = data.get("output_variable") or None
        if output_variable is not None and "." in output_variable:
            raise ConfigurationError(f"Step '{name}': output_variable may not contain '.'")

        depends_on = data.get("depends_on") or ()
        if not all(isinstance(d, int) and not isinstance(d, bool) for d in depends_on):
            raise ConfigurationError(f"Step '{name}': depends_on must list step order indices")

        timeout = data.get("timeout_seconds")
        if timeout is not None and float(timeout) <= 0:
            raise ConfigurationError(f"Step '{name}': timeout_seconds must be positive")

        step_id = data.get("id") or name
        config = data.get("config") or {}

        members: tuple[StepDefinition, ...] = ()
        if step_type == StepType.PARALLEL_GROUP:
            raw_members = config.get("members") or []
            if not raw_members:
                raise ConfigurationError(f"Parallel group '{name}' has no members")
            parsed = []
            for index, member in enumerate(raw_members):
                member = dict(member)
                member.setdefault("id", f"{step_id}:{index}")
                member.setdefault("name", f"{name}[{index}]")
                member["step_order"] = step_order
                member.pop("depends_on", None)
                child = cls.from_dict(member)
                if child.step_type in (StepType.APPROVAL, StepType.PARALLEL_GROUP):
                    raise ConfigurationError(
                        f"Parallel group '{name}' cannot contain {child.step_type.value} steps"
                    )
                parsed.append(child)
            members = tuple(parsed)

        approval = None
        if step_type == StepType.APPROVAL:
            approval = ApprovalPolicy.from_dict(data.get("approval_config"), name)

        if step_type == StepType.AGENT_EXECUTION and not data.get("agent_id"):
            raise ConfigurationError(f"Agent step '{name}' has no agent_id")

        return cls(
            id=step_id,
            name=name,
            order=int(step_order),
            step_type=step_type,
            agent_id=data.get("agent_id"),
            input_mapping=data.get("input_mapping"),
            output_variable=output_variable,
            condition=data.get("condition_expression") or None,
            depends_on=tuple(depends_on),
            retry=retry,
            timeout_seconds=float(timeout) if timeout is not None else None,
            approval=approval,
            members=members,
        )


# ─── Workflows ─────────────────────────────────────────────────

@dataclass(frozen=True)
class WorkflowDefinition:
    """A workflow and its ordered steps.

    `source` is the JSON-safe dict the definition was built from. It is
    stored on each execution so a suspended run resumes with the steps it
    started with, whatever has been edited since.
    """

    id: str
    name: str
    trigger_type: TriggerType = TriggerType.MANUAL
    execution_mode: ExecutionMode = ExecutionMode.SYNC
    is_active: bool = True
    is_public: bool = False
    interface_type: InterfaceType = InterfaceType.FORM
    input_schema: Optional[dict] = None
    steps: tuple[StepDefinition, ...] = ()
    source: Optional[dict] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        validate_steps(self.steps)

    @classmethod
    def from_model(cls, workflow) -> "WorkflowDefinition":
        """Build from a Workflow ORM row with its steps loaded."""
        return cls.from_dict(snapshot_workflow(workflow))

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowDefinition":
        steps = sorted(
            (StepDefinition.from_dict(s, order=i) for i, s in enumerate(data.get("steps") or [])),
            key=lambda s: s.order,
        )
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            trigger_type=TriggerType(data.get("trigger_type", TriggerType.MANUAL.value)),
            execution_mode=ExecutionMode(data.get("execution_mode", ExecutionMode.SYNC.value)),
            is_active=data.get("is_active", True),
            is_public=data.get("is_public", False),
            interface_type=InterfaceType(data.get("interface_type", InterfaceType.FORM.value)),
            input_schema=data.get("input_schema"),
            steps=tuple(steps),
            source=data,
        )

    def step_index(self, step_id: str) -> int:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        raise ConfigurationError(f"Workflow '{self.name}' has no step {step_id}")


def validate_steps(steps) -> None:
    """Check cross-step rules: unique order indices, backward-only depends_on."""
    seen_orders: set[int] = set()
    for step in steps:
        if step.order in seen_orders:
            raise ConfigurationError(f"Duplicate step order {step.order}")
        for dep in step.depends_on:
            if dep >= step.order:
                raise ConfigurationError(
                    f"Step '{step.name}' depends on step {dep}, which does not come before it"
                )
            if dep not in seen_orders:
                raise ConfigurationError(f"Step '{step.name}' depends on unknown step {dep}")
        seen_orders.add(step.order)


def snapshot_step(step) -> dict:
    """A WorkflowStep row in the shape StepDefinition.from_dict reads."""
    return {
        "id": step.id,
        "name": step.name,
        "step_order": step.step_order,
        "step_type": step.step_type,
        "agent_id": step.agent_id,
        "input_mapping": copy.deepcopy(step.input_mapping),
        "output_variable": step.output_variable,
        "condition_expression": step.condition_expression,
        "depends_on": list(step.depends_on or []),
        "retry_config": copy.deepcopy(step.retry_config),
        "timeout_seconds": step.timeout_seconds,
        "approval_config": copy.deepcopy(step.approval_config),
        "config": copy.deepcopy(step.config),
    }


def snapshot_workflow(workflow) -> dict:
    """A Workflow row and its live steps in the shape WorkflowDefinition.from_dict reads."""
    steps = sorted(
        (s for s in workflow.steps if not s.is_deleted),
        key=lambda s: s.step_order,
    )
    return {
        "id": workflow.id,
        "name": workflow.name,
        "trigger_type": workflow.trigger_type,
        "execution_mode": workflow.execution_mode,
        "is_active": workflow.is_active,
        "is_public": workflow.is_public,
        "interface_type": workflow.interface_type,
        "input_schema": copy.deepcopy(workflow.input_schema),
        "steps": [snapshot_step(s) for s in steps],
    }


# ─── Engine configuration ──────────────────────────────────────

@dataclass(frozen=True)
class EngineConfig:
    """Collaborators and defaults shared by every execution.

    model_client must provide `async create_message(**request) -> dict`
    returning an Anthropic Messages API response body.
    """

    model_client: Any
    tool_registry: Any
    default_model: str = "claude-sonnet-4-5-20250929"
    default_max_tokens: int = 1024
    default_temperature: float = 0.7
    max_tool_turns: int = 5
    fallback_message: str = (
        "I apologize, but I could not complete your request. Please try again later."
    )
    default_step_timeout: Optional[float] = 300.0

    @classmethod
    def from_settings(cls, model_client, tool_registry, settings=None) -> "EngineConfig":
        settings = settings or get_settings()
        return cls(
            model_client=model_client,
            tool_registry=tool_registry,
            default_model=settings.CLAUDE_MODEL,
            default_max_tokens=settings.CLAUDE_MAX_TOKENS,
            default_temperature=settings.CLAUDE_TEMPERATURE,
            max_tool_turns=settings.AGENT_MAX_TOOL_TURNS,
            fallback_message=settings.AGENT_FALLBACK_MESSAGE,
            default_step_timeout=settings.STEP_DEFAULT_TIMEOUT_SECONDS,
        )
