"""
Pydantic schemas and response envelopes for the Amparo REST API.

Every route returns either ``success_response(data)`` or, through the
exception handlers, ``error_response(code)``:

    {"success": true, "data": ...}
    {"success": false, "error": {"code": ..., "message": ...}}
"""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from amparo.lib.errors import build_error_response
from amparo.services.goal_service import GoalInput

# =============================================================================
# Envelopes
# =============================================================================


def success_response(data: Any = None) -> dict[str, Any]:
    return {"success": True, "data": data}


def error_response(
    code: str,
    message: str | None = None,
    details: dict[str, Any] | None = None,
    lang: str = "pt",
) -> dict[str, Any]:
    return {"success": False, "error": build_error_response(code, message, details, lang)}


# =============================================================================
# Auth
# =============================================================================


class VerifyTokenRequest(BaseModel):
    """Identity token obtained by the client from the identity provider."""

    idToken: str = Field(..., min_length=1)


# =============================================================================
# Conversations
# =============================================================================


class CreateConversationRequest(BaseModel):
    title: str | None = Field(default=None, max_length=255)


class RenameConversationRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)


# =============================================================================
# Goals
# =============================================================================


class GoalDetails(BaseModel):
    title: str = Field(..., max_length=500)
    description: str | None = Field(default=None, max_length=5000)
    target_date: date | None = None


class CreateGoalRequest(BaseModel):
    """
    A new goal. ``goal`` is either the title itself, with the description
    alongside it, or an object carrying title, description and target date.
    """

    goal: str | GoalDetails
    description: str | None = Field(default=None, max_length=5000)

    def to_input(self) -> GoalInput:
        if isinstance(self.goal, GoalDetails):
            return GoalInput(
                title=self.goal.title,
                description=self.goal.description,
                target_date=self.goal.target_date,
            )
        return GoalInput(title=self.goal, description=self.description)


class UpdateGoalRequest(BaseModel):
    status: str | None = None
    progress: int | None = None


class CreateCheckinRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=5000)
    moodScore: int | None = None


# =============================================================================
# User
# =============================================================================


class UpdateThemeRequest(BaseModel):
    theme: str


class ConsentRequest(BaseModel):
    consentType: str = Field(..., min_length=1, max_length=50)
    accepted: bool


# =============================================================================
# Resources
# =============================================================================


class ResourceAccessRequest(BaseModel):
    resourceId: int | None = None
    resourceType: str | None = Field(default=None, max_length=50)
