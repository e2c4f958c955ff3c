"""Agent model for the agent workflow engine."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class Agent(BaseModel):
    """A configured language-model persona invoked by AGENT_EXECUTION steps.

    Attributes:
        id: Unique identifier (UUID string)
        name: Agent name
        description: What the agent is for
        model_name: Model identifier sent to the API (None uses the default)
        system_prompt: System instruction for every conversation
        temperature: Sampling temperature
        max_tokens: Maximum output tokens per model turn
        tool_names: Names of registered tools the agent may call
        config: Extra settings
        is_active: Whether steps may invoke the agent
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    __tablename__ = "agents"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    model_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    system_prompt: Mapped[str] = mapped_column(nullable=False, default="")
    temperature: Mapped[float] = mapped_column(default=0.7)
    max_tokens: Mapped[int] = mapped_column(default=1024)
    tool_names: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
