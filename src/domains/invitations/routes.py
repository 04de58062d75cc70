# src/domains/invitations/routes.py
from typing import List

from fastapi import APIRouter, Depends, status

from prisma import Prisma
from src.core.database import get_db
from src.core.supabase import AuthProvider, get_auth_provider
from src.domains.auth.types import AuthContext
from src.domains.invitations.models import (
    AcceptInvitationRequest,
    AcceptInvitationResponse,
    InvitationResponse,
    SendInvitationRequest,
    SendInvitationResponse,
)
from src.domains.invitations.service import InvitationService
from src.shared.permissions.dependencies import (
    require_broker_access,
    require_permission,
)
from src.shared.permissions.types import MessageResponse

router = APIRouter(prefix="/invitations", tags=["Invitations"])


@router.post(
    "/send",
    response_model=SendInvitationResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="sendInvitation",
)
async def send_invitation(
    request: SendInvitationRequest,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("invitations:create")),
    db: Prisma = Depends(get_db),
) -> SendInvitationResponse:
    """
    Invite someone to run a new broker beneath the caller's broker.

    Email delivery is not handled here; the response carries the token and
    acceptance URL for the caller to pass on.
    """
    service = InvitationService(db)
    return await service.send_invitation(request, context.user_id)


@router.get(
    "",
    response_model=List[InvitationResponse],
    operation_id="listInvitations",
)
async def list_invitations(
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("invitations:read")),
    db: Prisma = Depends(get_db),
) -> List[InvitationResponse]:
    service = InvitationService(db)
    return await service.list_invitations(allowed_broker_ids)


@router.delete(
    "/{invitation_id}",
    response_model=MessageResponse,
    operation_id="revokeInvitation",
)
async def revoke_invitation(
    invitation_id: str,
    allowed_broker_ids: List[str] = Depends(require_broker_access("hierarchy")),
    context: AuthContext = Depends(require_permission("invitations:delete")),
    db: Prisma = Depends(get_db),
) -> MessageResponse:
    service = InvitationService(db)
    return await service.revoke_invitation(invitation_id, allowed_broker_ids)


@router.post(
    "/accept",
    response_model=AcceptInvitationResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="acceptInvitation",
)
async def accept_invitation(
    request: AcceptInvitationRequest,
    db: Prisma = Depends(get_db),
    auth_provider: AuthProvider = Depends(get_auth_provider),
) -> AcceptInvitationResponse:
    """Public: create the invitee's account, child broker and agent profile."""
    service = InvitationService(db, auth_provider)
    return await service.accept_invitation(request)
