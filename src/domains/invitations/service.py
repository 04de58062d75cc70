# src/domains/invitations/service.py
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from prisma.enums import InvitationStatus

from prisma import Prisma
from src.core.settings import settings
from src.core.supabase import AuthProvider
from src.domains.invitations.models import (
    AcceptInvitationRequest,
    AcceptInvitationResponse,
    InvitationResponse,
    SendInvitationRequest,
    SendInvitationResponse,
)
from src.shared.exceptions import (
    BaseHTTPException,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ProfileCreationError,
    ValidationError,
)
from src.shared.permissions.dependencies import (
    get_broker_filter,
    validate_broker_access,
)
from src.shared.permissions.models import RoleName
from src.shared.permissions.services import PermissionService
from src.shared.permissions.types import MessageResponse

logger = logging.getLogger(__name__)


class InvitationService:
    """
    Tokenized invitations that onboard a sub-broker.

    Accepting an invitation creates a child broker beneath the inviter's
    broker and an ``agent`` profile owning it, all in one transaction.
    """

    def __init__(
        self,
        db: Prisma,
        auth_provider: Optional[AuthProvider] = None,
        permission_service: Optional[PermissionService] = None,
    ):
        self.db = db
        self.auth_provider = auth_provider
        self.permission_service = permission_service or PermissionService(db)

    async def send_invitation(
        self, request: SendInvitationRequest, invited_by: str
    ) -> SendInvitationResponse:
        """
        Create a pending invitation for a new child broker.

        Raises:
            NotFoundError: If the sender has no profile
            ForbiddenError: If the sender lacks ``invitations:create``
            ValidationError: If the sender does not belong to a broker
            ConflictError: If the broker name is taken or the email already
                has a pending, unexpired invitation
        """
        sender = await self.db.profile.find_unique(where={"id": invited_by})
        if not sender:
            raise NotFoundError("Sender profile not found")

        can_invite = await self.permission_service.user_has_permission(
            invited_by, "invitations:create"
        )
        if not can_invite:
            logger.warning(f"User {invited_by} attempted to invite without permission")
            raise ForbiddenError("Unauthorized to send invitations")

        if not sender.brokerId:
            raise ValidationError("Sender must belong to a broker to send invitations")

        existing_broker = await self.db.broker.find_unique(
            where={"name": request.child_broker_name}
        )
        if existing_broker:
            raise ConflictError("Broker name already exists")

        now = datetime.now(timezone.utc)
        pending = await self.db.invitation.find_first(
            where={
                "email": request.email,
                "status": InvitationStatus.pending,
                "expiresAt": {"gt": now},
            }
        )
        if pending:
            raise ConflictError("A pending invitation already exists for this email")

        invitation = await self.db.invitation.create(
            data={
                "token": str(uuid.uuid4()),
                "email": request.email,
                "brokerId": sender.brokerId,
                "invitedBy": invited_by,
                "childBrokerName": request.child_broker_name,
                "childBrokerDescription": request.child_broker_description,
                "expiresAt": now + timedelta(days=settings.INVITATION_EXPIRY_DAYS),
            }
        )
        logger.info(
            f"User {invited_by} invited {request.email} to create broker "
            f"'{request.child_broker_name}' under {sender.brokerId}"
        )

        return SendInvitationResponse(
            message="Invitation sent",
            invitation=InvitationResponse.from_prisma(invitation),
            token=invitation.token,
            accept_url=(
                f"{settings.CLIENT_URL}/accept-invitation?token={invitation.token}"
            ),
        )

    async def accept_invitation(
        self, request: AcceptInvitationRequest
    ) -> AcceptInvitationResponse:
        """
        Consume an invitation: sign the invitee up, then create the child
        broker, the profile and the ``agent`` role assignment atomically.

        If anything after sign-up fails the auth identity is deleted again and
        no rows remain.

        Raises:
            NotFoundError: If the token is unknown
            ValidationError: If the invitation was already used or has expired
            ConflictError: If the cedula/RUC or broker name is already taken
            ProfileCreationError: If the transaction fails
        """
        invitation = await self.db.invitation.find_unique(
            where={"token": request.token}
        )
        if not invitation:
            raise NotFoundError("Invitation not found")

        if invitation.status != InvitationStatus.pending:
            raise ValidationError("Invitation has already been accepted")

        if invitation.expiresAt < datetime.now(timezone.utc):
            raise ValidationError("Invitation has expired")

        existing_profile = await self.db.profile.find_unique(
            where={"cedulaRuc": request.cedula_ruc}
        )
        if existing_profile:
            raise ConflictError("Cedula/RUC already registered")

        existing_broker = await self.db.broker.find_unique(
            where={"name": invitation.childBrokerName}
        )
        if existing_broker:
            raise ConflictError("Broker name already exists")

        if self.auth_provider is None:
            raise BaseHTTPException("Authentication provider not configured")

        auth_result = await self.auth_provider.sign_up(
            invitation.email, request.password
        )
        user_id = auth_result.user.id

        try:
            async with self.db.tx() as transaction:
                # pending -> accepted happens at most once per invitation
                claimed = await transaction.invitation.update_many(
                    where={"id": invitation.id, "status": InvitationStatus.pending},
                    data={"status": InvitationStatus.accepted},
                )
                if claimed == 0:
                    raise ConflictError("Invitation has already been accepted")

                broker = await transaction.broker.create(
                    data={
                        "name": invitation.childBrokerName,
                        "description": invitation.childBrokerDescription,
                        "parentId": invitation.brokerId,
                    }
                )
                await transaction.profile.create(
                    data={
                        "id": user_id,
                        "firstName": request.first_name,
                        "lastName": request.last_name,
                        "cedulaRuc": request.cedula_ruc,
                        "phone": request.phone,
                        "brokerId": broker.id,
                    }
                )
                agent_role = await transaction.role.find_unique(
                    where={"name": RoleName.AGENT.value}
                )
                if not agent_role:
                    raise NotFoundError("Agent role not found")

                await transaction.userrole.create(
                    data={
                        "userId": user_id,
                        "roleId": agent_role.id,
                        "assignedBy": invitation.invitedBy,
                    }
                )
        except Exception as e:
            logger.error(
                f"Failed to accept invitation {invitation.id} for {invitation.email}: "
                f"{e}",
                exc_info=True,
            )
            await self.auth_provider.admin_delete_user(user_id)
            if isinstance(e, ConflictError):
                raise
            raise ProfileCreationError(
                "Failed to create user profile from invitation"
            ) from e

        logger.info(
            f"Invitation {invitation.id} accepted: user {user_id} owns broker "
            f"{broker.id} under {invitation.brokerId}"
        )
        return AcceptInvitationResponse(
            message="Invitation accepted, user created",
            user_id=user_id,
            broker_id=broker.id,
            broker_name=broker.name,
        )

    async def list_invitations(
        self, allowed_broker_ids: Optional[List[str]]
    ) -> List[InvitationResponse]:
        invitations = await self.db.invitation.find_many(
            where=get_broker_filter(allowed_broker_ids),  # type: ignore[arg-type]
            order={"createdAt": "desc"},
        )
        return [
            InvitationResponse.from_prisma(invitation) for invitation in invitations
        ]

    async def revoke_invitation(
        self, invitation_id: str, allowed_broker_ids: Optional[List[str]]
    ) -> MessageResponse:
        """
        Delete a pending invitation.

        Raises:
            NotFoundError: If the invitation does not exist
            ForbiddenError: If it belongs to a broker outside the caller's
            ValidationError: If it has already been accepted
        """
        invitation = await self.db.invitation.find_unique(where={"id": invitation_id})
        if not invitation:
            raise NotFoundError("Invitation not found")

        validate_broker_access(invitation.brokerId, allowed_broker_ids)

        if invitation.status != InvitationStatus.pending:
            raise ValidationError("Only pending invitations can be revoked")

        await self.db.invitation.delete(where={"id": invitation_id})
        logger.info(f"Revoked invitation {invitation_id} for {invitation.email}")
        return MessageResponse(message="Invitation revoked")
