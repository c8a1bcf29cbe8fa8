"""
glassbox/data_models/tools.py

Result payload returned across the tool invocation boundary.
"""

from typing import Any

from pydantic import BaseModel, Field


class ToolResult(BaseModel):
    """
    Outcome of one tool invocation.
    """
    tool_name: str = Field(
        ...,
        description="Name of the invoked tool",
        examples=["console_get_messages"]
    )
    is_error: bool = Field(
        default=False,
        description="Whether the invocation failed",
    )
    content: dict[str, Any] | None = Field(
        default=None,
        description="Structured result payload (success only)",
    )
    error: str | None = Field(
        default=None,
        description="Human-readable failure reason (failure only)",
    )
