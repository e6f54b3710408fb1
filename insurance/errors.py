"""Error taxonomy for the policy lifecycle.

Every error carries a machine-readable code so the API layer can render a
structured response without inspecting message text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class InsuranceError(Exception):
    """Base class for all errors raised by the insurance core."""

    message: str
    code: str = "WI_INTERNAL_ERROR"
    details: dict[str, Any] = field(default_factory=dict)
    policy_id: int | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        text = f"[{self.code}] {self.message}"
        if self.policy_id is not None:
            text += f" (policy: {self.policy_id})"
        return text

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and log records."""
        result: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        if self.policy_id is not None:
            result["policyId"] = self.policy_id
        return result


@dataclass
class ValidationError(InsuranceError):
    """A required field is missing or malformed."""

    code: str = "WI_VALIDATION_ERROR"


@dataclass
class NotFoundError(InsuranceError):
    """A policy, snapshot or transaction does not exist."""

    code: str = "WI_NOT_FOUND"


@dataclass
class StateConflictError(InsuranceError):
    """The policy is not in the lifecycle state the operation requires."""

    code: str = "WI_STATE_CONFLICT"


@dataclass
class UnknownCategoryError(InsuranceError):
    """The policy references an event type with no eligibility rule."""

    code: str = "WI_UNKNOWN_CATEGORY"


__all__ = [
    "InsuranceError",
    "ValidationError",
    "NotFoundError",
    "StateConflictError",
    "UnknownCategoryError",
]
