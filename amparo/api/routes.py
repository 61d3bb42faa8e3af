"""
REST API routes for Amparo.

All responses use the success/error envelope from ``amparo.api.schemas``.
Domain exceptions are not caught here; the handlers registered in
``create_app`` turn them into envelopes with the right status code.

Endpoints (all under /api, rate limited per client IP):
- /auth/verify, /auth/logout
- /conversations, /conversations/{id}, /conversations/{id}/messages,
  /conversations/{id}/summary
- /goals, /goals/{id}, /goals/{id}/checkin, /goals/{id}/checkins
- /user/profile, /user/theme, /user/delete-account, /user/export-data,
  /user/consent
- /resources, /resources/emergency, /resources/{id}, /resources/access-log
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request

from amparo.api.dependencies import (
    client_ip,
    enforce_rate_limit,
    get_account_service,
    get_conversation_service,
    get_goal_service,
    get_principal,
    get_resource_service,
)
from amparo.api.schemas import (
    ConsentRequest,
    CreateCheckinRequest,
    CreateConversationRequest,
    CreateGoalRequest,
    RenameConversationRequest,
    ResourceAccessRequest,
    UpdateGoalRequest,
    UpdateThemeRequest,
    VerifyTokenRequest,
    success_response,
)
from amparo.services.account_service import AccountService
from amparo.services.conversation_service import ConversationService, conversation_to_dict
from amparo.services.goal_service import GoalService
from amparo.services.identity import Principal
from amparo.services.resource_service import ResourceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(enforce_rate_limit)])


# =============================================================================
# Auth
# =============================================================================


@router.post("/auth/verify")
async def verify_token(
    data: VerifyTokenRequest,
    accounts: AccountService = Depends(get_account_service),
) -> dict[str, Any]:
    """Verify an identity token and create or update the local user."""
    principal = await accounts.authenticate(data.idToken)
    profile = await accounts.profile(principal.user_id)
    return success_response({"user": {**profile, "email": principal.email}})


@router.post("/auth/logout")
async def logout() -> dict[str, Any]:
    # Tokens are revoked at the identity provider by the client
    return success_response({"message": "Logout realizado com sucesso"})


# =============================================================================
# Conversations
# =============================================================================


@router.get("/conversations")
async def list_conversations(
    principal: Principal = Depends(get_principal),
    conversations: ConversationService = Depends(get_conversation_service),
) -> dict[str, Any]:
    items = await conversations.list_for_user(principal.user_id)
    return success_response([conversation_to_dict(c) for c in items])


@router.post("/conversations", status_code=201)
async def create_conversation(
    data: CreateConversationRequest,
    principal: Principal = Depends(get_principal),
    conversations: ConversationService = Depends(get_conversation_service),
) -> dict[str, Any]:
    conversation = await conversations.create(principal.user_id, data.title)
    return success_response(conversation_to_dict(conversation))


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    principal: Principal = Depends(get_principal),
    conversations: ConversationService = Depends(get_conversation_service),
) -> dict[str, Any]:
    conversation = await conversations.get(principal.user_id, conversation_id)
    return success_response(conversation_to_dict(conversation))


@router.put("/conversations/{conversation_id}")
async def rename_conversation(
    conversation_id: str,
    data: RenameConversationRequest,
    principal: Principal = Depends(get_principal),
    conversations: ConversationService = Depends(get_conversation_service),
) -> dict[str, Any]:
    conversation = await conversations.rename(principal.user_id, conversation_id, data.title)
    return success_response(conversation_to_dict(conversation))


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    principal: Principal = Depends(get_principal),
    conversations: ConversationService = Depends(get_conversation_service),
) -> dict[str, Any]:
    await conversations.delete(principal.user_id, conversation_id)
    return success_response({"id": conversation_id, "deleted": True})


@router.get("/conversations/{conversation_id}/messages")
async def get_conversation_messages(
    conversation_id: str,
    principal: Principal = Depends(get_principal),
    conversations: ConversationService = Depends(get_conversation_service),
) -> dict[str, Any]:
    """Decrypted message history, oldest first."""
    data = await conversations.get_with_messages(principal, conversation_id)
    return success_response(data["messages"])


@router.get("/conversations/{conversation_id}/summary")
async def get_conversation_summary(
    conversation_id: str,
    principal: Principal = Depends(get_principal),
    conversations: ConversationService = Depends(get_conversation_service),
) -> dict[str, Any]:
    summary = await conversations.summarize(principal, conversation_id)
    return success_response({"conversationId": conversation_id, "summary": summary})


# =============================================================================
# Goals
# =============================================================================


@router.get("/goals")
async def list_goals(
    status: str | None = None,
    principal: Principal = Depends(get_principal),
    goals: GoalService = Depends(get_goal_service),
) -> dict[str, Any]:
    return success_response(await goals.list(principal, status))


@router.post("/goals", status_code=201)
async def create_goal(
    data: CreateGoalRequest,
    principal: Principal = Depends(get_principal),
    goals: GoalService = Depends(get_goal_service),
) -> dict[str, Any]:
    return success_response(await goals.create(principal, data.to_input()))


@router.get("/goals/{goal_id}")
async def get_goal(
    goal_id: str,
    principal: Principal = Depends(get_principal),
    goals: GoalService = Depends(get_goal_service),
) -> dict[str, Any]:
    return success_response(await goals.get(principal, goal_id))


@router.put("/goals/{goal_id}")
async def update_goal(
    goal_id: str,
    data: UpdateGoalRequest,
    principal: Principal = Depends(get_principal),
    goals: GoalService = Depends(get_goal_service),
) -> dict[str, Any]:
    updated = await goals.update(principal.user_id, goal_id, data.status, data.progress)
    return success_response(updated)


@router.delete("/goals/{goal_id}")
async def delete_goal(
    goal_id: str,
    principal: Principal = Depends(get_principal),
    goals: GoalService = Depends(get_goal_service),
) -> dict[str, Any]:
    await goals.delete(principal.user_id, goal_id)
    return success_response({"id": goal_id, "deleted": True})


@router.post("/goals/{goal_id}/checkin", status_code=201)
async def create_checkin(
    goal_id: str,
    data: CreateCheckinRequest,
    principal: Principal = Depends(get_principal),
    goals: GoalService = Depends(get_goal_service),
) -> dict[str, Any]:
    checkin = await goals.create_checkin(principal, goal_id, data.notes, data.moodScore)
    return success_response(checkin)


@router.get("/goals/{goal_id}/checkins")
async def list_checkins(
    goal_id: str,
    principal: Principal = Depends(get_principal),
    goals: GoalService = Depends(get_goal_service),
) -> dict[str, Any]:
    return success_response(await goals.list_checkins(principal, goal_id))


# =============================================================================
# User
# =============================================================================


@router.get("/user/profile")
async def get_profile(
    principal: Principal = Depends(get_principal),
    accounts: AccountService = Depends(get_account_service),
) -> dict[str, Any]:
    return success_response(await accounts.profile(principal.user_id))


@router.patch("/user/theme")
async def update_theme(
    data: UpdateThemeRequest,
    principal: Principal = Depends(get_principal),
    accounts: AccountService = Depends(get_account_service),
) -> dict[str, Any]:
    theme = await accounts.update_theme(principal.user_id, data.theme)
    return success_response({"theme": theme})


@router.delete("/user/delete-account")
async def delete_account(
    request: Request,
    principal: Principal = Depends(get_principal),
    accounts: AccountService = Depends(get_account_service),
) -> dict[str, Any]:
    """Permanently delete the account and all of its data."""
    await accounts.delete_account(principal, client_ip(request))
    return success_response({"message": "Conta e todos os dados foram permanentemente deletados"})


@router.get("/user/export-data")
async def export_data(
    principal: Principal = Depends(get_principal),
    accounts: AccountService = Depends(get_account_service),
) -> dict[str, Any]:
    return success_response(await accounts.export_data(principal.user_id))


@router.post("/user/consent")
async def record_consent(
    data: ConsentRequest,
    request: Request,
    principal: Principal = Depends(get_principal),
    accounts: AccountService = Depends(get_account_service),
) -> dict[str, Any]:
    await accounts.record_consent(principal.user_id, data.consentType, data.accepted, client_ip(request))
    return success_response({"consentType": data.consentType, "accepted": data.accepted})


# =============================================================================
# Resources
# =============================================================================


@router.get("/resources")
async def list_resources(
    type: str | None = None,
    city: str | None = None,
    state: str | None = None,
    principal: Principal = Depends(get_principal),
    resources: ResourceService = Depends(get_resource_service),
) -> dict[str, Any]:
    return success_response(await resources.list_local(type, city, state))


@router.get("/resources/emergency")
async def emergency_resources(
    principal: Principal = Depends(get_principal),
    resources: ResourceService = Depends(get_resource_service),
) -> dict[str, Any]:
    return success_response(await resources.emergency())


@router.get("/resources/{resource_id}")
async def get_resource(
    resource_id: int,
    principal: Principal = Depends(get_principal),
    resources: ResourceService = Depends(get_resource_service),
) -> dict[str, Any]:
    return success_response(await resources.get(resource_id))


__all__ = ["router"]


@router.post("/resources/access-log")
async def log_resource_access(
    data: ResourceAccessRequest,
    principal: Principal = Depends(get_principal),
    resources: ResourceService = Depends(get_resource_service),
) -> dict[str, Any]:
    await resources.log_access(principal.user_id, data.resourceId, data.resourceType)
    return success_response()
