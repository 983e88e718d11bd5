"""API request schemas for approval endpoints."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator


class ApproveRequest(BaseModel):
    """Review decision submitted by an admin."""

    id: str = Field(min_length=1)
    status: Literal["Approved", "Rejected"]

    @field_validator("id", mode="before")
    @classmethod
    def _numeric_id(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value
