from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorSeverity(str, Enum):
    RECOVERABLE = "recoverable"
    USER_INPUT = "user_input"
    STATE_MISMATCH = "state_mismatch"
    VALIDATION = "validation"
    SYSTEM = "system"


class ToolError(BaseModel):
    severity: ErrorSeverity
    code: str
    message: str
    recovery_hint: str | None = None
    affected_field: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    def to_response(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "error_code": self.code,
            "severity": self.severity.value,
            "recovery_hint": self.recovery_hint,
            "affected_field": self.affected_field,
            "context": self.context,
        }


class LoopState(str, Enum):
    """States of the bounded tool loop."""
    AWAITING_PROPOSAL = "awaiting_proposal"
    EXECUTING = "executing"
    FINISHED = "finished"


class EditRequest(BaseModel):
    message: str = Field(description="User edit request")
    history: list[dict[str, str]] = Field(
        default_factory=list,
        description="Earlier user/assistant turns, oldest first",
    )


class ToolCallRecord(BaseModel):
    iteration: int
    tool: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] = Field(default_factory=dict)


class EditAgentResult(BaseModel):
    message: str
    receipts: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    needs_disambiguation: bool = False
    disambiguation_options: list[dict[str, Any]] = Field(default_factory=list)
    iterations: int = 0
    budget_exhausted: bool = Field(
        default=False,
        description="True when the loop stopped because it ran out of iterations",
    )
    new_version: int | None = None
