"""
Schemas for the validation API (POST /api/sessions/{id}/validate).

CustomerProfile mirrors what the booking agent extracts from the call. Dates
are kept as ISO strings (YYYY-MM-DD) so impossible days such as April 31 reach
the validator instead of being rejected at parse time.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

Severity = Literal["error", "warning", "info"]


class TravelDates(BaseModel):
    check_in: str | None = Field(None, alias="checkIn", description="ISO date, YYYY-MM-DD")
    check_out: str | None = Field(None, alias="checkOut", description="ISO date, YYYY-MM-DD")
    flexible: bool | None = None

    class Config:
        populate_by_name = True


class PartySize(BaseModel):
    adults: int | None = None
    children: int | None = None
    child_ages: list[int] | None = Field(None, alias="childAges")

    class Config:
        populate_by_name = True


class Budget(BaseModel):
    min: float | None = None
    max: float | None = None
    currency: str | None = None


class CustomerProfile(BaseModel):
    """Information extracted about the customer during the call."""

    name: str | None = None
    travel_dates: TravelDates | None = Field(None, alias="travelDates")
    party_size: PartySize | None = Field(None, alias="partySize")
    budget: Budget | None = None
    preferences: list[str] | None = Field(None, description='e.g. ["beach view", "all-inclusive"]')
    special_requests: list[str] | None = Field(None, alias="specialRequests")

    class Config:
        populate_by_name = True


class ValidationIssue(BaseModel):
    field: str = Field(..., description="Dotted profile path, e.g. travelDates.checkOut")
    severity: Severity
    message: str
    suggestion: str | None = None
    auto_fix: dict[str, Any] | None = Field(
        None, alias="autoFix", description="Partial profile (camelCase) that would resolve the issue"
    )
    agent_hint: str | None = Field(
        None, alias="agentHint", description="Clarifying question the agent can ask the customer"
    )

    class Config:
        populate_by_name = True


class ValidationResult(BaseModel):
    valid: bool = Field(..., description="False when any issue has severity error")
    issues: list[ValidationIssue] = Field(default_factory=list)
    confidence: float = Field(100, ge=0, le=100, description="How sure we are the flagged data is wrong")


class ValidateRequest(BaseModel):
    """Request body for POST /api/sessions/{id}/validate."""

    profile: CustomerProfile
    recent_messages: int = Field(
        5, alias="recentMessages", ge=0, description="Transcript entries (from the end) checked against the profile"
    )

    class Config:
        populate_by_name = True
