"""
glassbox/data_models/security.py

Result model shared by every input validator.
"""

from typing import Any

from pydantic import BaseModel, Field, model_validator


class ValidationResult(BaseModel):
    """
    Outcome of validating one external input.
    Either a safe, ready-to-use value is returned or none is; there is no partial result.
    """
    is_valid: bool = Field(
        ...,
        description="Whether the input passed validation",
    )
    sanitized_value: Any | None = Field(
        default=None,
        description="The value to use downstream (only set when valid)",
    )
    error_reason: str | None = Field(
        default=None,
        description="Human-readable reason for rejection (only set when invalid)",
    )

    @model_validator(mode="after")
    def _check_consistency(self) -> "ValidationResult":
        if self.is_valid and (self.sanitized_value is None or self.error_reason is not None):
            raise ValueError("valid results carry a sanitized value and no error")
        if not self.is_valid and (self.sanitized_value is not None or not self.error_reason):
            raise ValueError("invalid results carry an error reason and no value")
        return self

    @classmethod
    def ok(cls, value: Any) -> "ValidationResult":
        """Build a passing result."""
        return cls(is_valid=True, sanitized_value=value)

    @classmethod
    def fail(cls, reason: str) -> "ValidationResult":
        """Build a failing result."""
        return cls(is_valid=False, error_reason=reason)
