"""Settings models and dispatch outcomes.

Models:
    DispatchSettings, RateLimitSettings

Enums:
    DispatchOutcome
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DispatchOutcome(str, Enum):
    """Terminal state of a single dispatch.

    Flow: Received -> Tokenized -> Resolved -> Authorized -> Invoked
    -> Done. Each early exit has its own outcome.
    """
    NO_COMMAND = "no_command"
    UNRESOLVED = "unresolved"
    RATE_LIMITED = "rate_limited"
    DENIED = "denied"
    INVALID_ARGUMENTS = "invalid_arguments"
    FAILED = "failed"
    SUCCEEDED = "succeeded"

    @property
    def is_silent(self) -> bool:
        """Outcomes that produce no user-visible output."""
        return self in (DispatchOutcome.NO_COMMAND, DispatchOutcome.UNRESOLVED)


class RateLimitSettings(BaseModel):
    """Per-actor sliding-window limit on command dispatches."""
    enabled: bool = Field(default=False)
    window_seconds: float = Field(default=60.0, gt=0)
    max_requests: int = Field(default=30, ge=1)


class DispatchSettings(BaseModel):
    """The ``dispatch`` section of settings.yaml."""
    prefix: str = Field(default="!", min_length=1, description="Command prefix")
    handler_timeout: Optional[float] = Field(
        default=30.0,
        gt=0,
        description="Seconds a handler may run before it counts as failed; null disables",
    )
    notice_ttl: float = Field(
        default=8.0,
        ge=0,
        description="Seconds before error notices are deleted; 0 keeps them",
    )
    delete_trigger_with_notice: bool = Field(
        default=False,
        description="Also delete the triggering message when a notice expires",
    )
    ignore_direct_messages: bool = Field(
        default=False,
        description="Treat messages without a guild as ordinary chat",
    )
    max_input_length: int = Field(default=2000, ge=1)
    denied_message: str = Field(
        default="Sorry, but you don't have permission to run that command."
    )
    invalid_arguments_message: str = Field(
        default=(
            "You didn't provide the correct arguments, please try again. "
            "Correct usage: `{prefix}{usage}`"
        )
    )
    failure_message: str = Field(
        default="Something went wrong while running that command."
    )
    rate_limited_message: str = Field(
        default="You're sending commands too quickly. Please wait a moment."
    )
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
