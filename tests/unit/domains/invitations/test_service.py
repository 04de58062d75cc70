"""
Tests for InvitationService in src/domains/invitations/service.py
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import HTTPException
from prisma.enums import InvitationStatus

from src.domains.invitations.models import (
    AcceptInvitationRequest,
    SendInvitationRequest,
)
from src.domains.invitations.service import InvitationService
from tests.utils.prisma_records import (
    make_broker,
    make_invitation,
    make_profile,
    make_role,
)


def accept_request(**overrides) -> AcceptInvitationRequest:
    data = {
        "token": "token-123",
        "password": "s3cret-pass",
        "first_name": "Luis",
        "last_name": "Mora",
        "cedula_ruc": "0923456789",
        "phone": "0987654321",
    }
    data.update(overrides)
    return AcceptInvitationRequest(**data)


@pytest.fixture
def permission_service() -> Mock:
    service = Mock()
    service.user_has_permission = AsyncMock(return_value=True)
    return service


@pytest.fixture
def invitation_service(
    mock_prisma: Mock, mock_auth_provider: Mock, permission_service: Mock
) -> InvitationService:
    return InvitationService(
        mock_prisma, mock_auth_provider, permission_service=permission_service
    )


class TestSendInvitation:
    @pytest.mark.asyncio
    async def test_invitation_targets_senders_broker(
        self, invitation_service: InvitationService, mock_prisma: Mock
    ):
        mock_prisma.profile.find_unique.return_value = make_profile(
            user_id="user-1", broker_id="broker-north"
        )
        mock_prisma.broker.find_unique.return_value = None
        mock_prisma.invitation.find_first.return_value = None
        mock_prisma.invitation.create.side_effect = lambda data: make_invitation(
            token=data["token"],
            email=data["email"],
            broker_id=data["brokerId"],
            child_broker_name=data["childBrokerName"],
        )

        result = await invitation_service.send_invitation(
            SendInvitationRequest(
                email="sub@example.com", child_broker_name="North Sub"
            ),
            invited_by="user-1",
        )

        data = mock_prisma.invitation.create.call_args[1]["data"]
        assert data["brokerId"] == "broker-north"
        assert data["invitedBy"] == "user-1"
        assert data["childBrokerName"] == "North Sub"
        expires_in = data["expiresAt"] - datetime.now(timezone.utc)
        assert timedelta(days=6, hours=23) < expires_in <= timedelta(days=7)

        assert result.invitation.status == "pending"
        assert result.invitation.broker_id == "broker-north"
        assert result.token == data["token"]
        assert result.accept_url == (
            f"http://localhost:3000/accept-invitation?token={data['token']}"
        )

    @pytest.mark.asyncio
    async def test_sender_without_permission_raises_403(
        self,
        invitation_service: InvitationService,
        mock_prisma: Mock,
        permission_service: Mock,
    ):
        mock_prisma.profile.find_unique.return_value = make_profile()
        permission_service.user_has_permission.return_value = False

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.send_invitation(
                SendInvitationRequest(email="sub@example.com", child_broker_name="Sub"),
                invited_by="user-agent",
            )

        assert exc_info.value.status_code == 403
        permission_service.user_has_permission.assert_called_once_with(
            "user-agent", "invitations:create"
        )
        mock_prisma.invitation.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_sender_without_broker_raises_400(
        self, invitation_service: InvitationService, mock_prisma: Mock
    ):
        mock_prisma.profile.find_unique.return_value = make_profile(broker_id=None)

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.send_invitation(
                SendInvitationRequest(email="sub@example.com", child_broker_name="Sub"),
                invited_by="system-1",
            )

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_sender_raises_404(
        self, invitation_service: InvitationService, mock_prisma: Mock
    ):
        mock_prisma.profile.find_unique.return_value = None

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.send_invitation(
                SendInvitationRequest(email="sub@example.com", child_broker_name="Sub"),
                invited_by="ghost",
            )

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_taken_broker_name_raises_409(
        self, invitation_service: InvitationService, mock_prisma: Mock
    ):
        mock_prisma.profile.find_unique.return_value = make_profile()
        mock_prisma.broker.find_unique.return_value = make_broker("broker-sub")

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.send_invitation(
                SendInvitationRequest(email="sub@example.com", child_broker_name="Sub"),
                invited_by="user-1",
            )

        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == "Broker name already exists"

    @pytest.mark.asyncio
    async def test_pending_invitation_for_email_raises_409(
        self,
        invitation_service: InvitationService,
        mock_prisma: Mock,
        pending_invitation: Mock,
    ):
        mock_prisma.profile.find_unique.return_value = make_profile()
        mock_prisma.broker.find_unique.return_value = None
        mock_prisma.invitation.find_first.return_value = pending_invitation

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.send_invitation(
                SendInvitationRequest(
                    email="new.broker@example.com", child_broker_name="Sub"
                ),
                invited_by="user-1",
            )

        assert exc_info.value.status_code == 409
        where = mock_prisma.invitation.find_first.call_args[1]["where"]
        assert where["status"] == InvitationStatus.pending
        assert "gt" in where["expiresAt"]
        mock_prisma.invitation.create.assert_not_called()


class TestAcceptInvitation:
    """Test onboarding of the invited sub-broker."""

    @pytest.fixture
    def ready_db(self, mock_prisma: Mock, pending_invitation: Mock) -> Mock:
        mock_prisma.invitation.find_unique.return_value = pending_invitation
        mock_prisma.profile.find_unique.return_value = None
        mock_prisma.broker.find_unique.return_value = None
        mock_prisma.invitation.update_many.return_value = 1
        mock_prisma.broker.create.return_value = make_broker(
            "broker-child", name="Child Broker", parent_id="broker-root"
        )
        mock_prisma.role.find_unique.return_value = make_role("agent")
        return mock_prisma

    @pytest.mark.asyncio
    async def test_accept_creates_child_broker_and_agent(
        self,
        invitation_service: InvitationService,
        ready_db: Mock,
        mock_auth_provider: Mock,
    ):
        ready_db.invitation.find_unique.return_value = make_invitation(
            invited_by="inviter-1"
        )

        result = await invitation_service.accept_invitation(accept_request())

        assert result.user_id == "user-1"
        assert result.broker_id == "broker-child"
        assert result.broker_name == "Child Broker"
        mock_auth_provider.sign_up.assert_called_once_with(
            "new.broker@example.com", "s3cret-pass"
        )
        ready_db.invitation.update_many.assert_called_once_with(
            where={"id": "inv-1", "status": InvitationStatus.pending},
            data={"status": InvitationStatus.accepted},
        )
        broker_data = ready_db.broker.create.call_args[1]["data"]
        assert broker_data["parentId"] == "broker-root"
        assert broker_data["name"] == "Child Broker"
        profile_data = ready_db.profile.create.call_args[1]["data"]
        assert profile_data["id"] == "user-1"
        assert profile_data["brokerId"] == "broker-child"
        assert profile_data["cedulaRuc"] == "0923456789"
        ready_db.userrole.create.assert_called_once_with(
            data={
                "userId": "user-1",
                "roleId": "role-agent",
                "assignedBy": "inviter-1",
            }
        )
        mock_auth_provider.admin_delete_user.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_token_raises_404(
        self, invitation_service: InvitationService, mock_prisma: Mock
    ):
        mock_prisma.invitation.find_unique.return_value = None

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.accept_invitation(accept_request(token="nope"))

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_accepted_invitation_raises_400(
        self,
        invitation_service: InvitationService,
        mock_prisma: Mock,
        mock_auth_provider: Mock,
        accepted_invitation: Mock,
    ):
        mock_prisma.invitation.find_unique.return_value = accepted_invitation

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.accept_invitation(accept_request())

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == "Invitation has already been accepted"
        mock_auth_provider.sign_up.assert_not_called()

    @pytest.mark.asyncio
    async def test_expired_invitation_raises_400(
        self,
        invitation_service: InvitationService,
        mock_prisma: Mock,
        mock_auth_provider: Mock,
        expired_invitation: Mock,
    ):
        mock_prisma.invitation.find_unique.return_value = expired_invitation

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.accept_invitation(accept_request())

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == "Invitation has expired"
        mock_auth_provider.sign_up.assert_not_called()
        mock_prisma.broker.create.assert_not_called()
        mock_prisma.profile.create.assert_not_called()
        mock_prisma.userrole.create.assert_not_called()
        mock_prisma.invitation.update_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_registered_cedula_raises_409(
        self, invitation_service: InvitationService, ready_db: Mock
    ):
        ready_db.profile.find_unique.return_value = make_profile()

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.accept_invitation(accept_request())

        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_concurrent_accept_loses_claim_and_cleans_up(
        self,
        invitation_service: InvitationService,
        ready_db: Mock,
        mock_auth_provider: Mock,
    ):
        ready_db.invitation.update_many.return_value = 0

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.accept_invitation(accept_request())

        assert exc_info.value.status_code == 409
        ready_db.broker.create.assert_not_called()
        mock_auth_provider.admin_delete_user.assert_called_once_with("user-1")

    @pytest.mark.asyncio
    async def test_failure_after_sign_up_deletes_identity(
        self,
        invitation_service: InvitationService,
        ready_db: Mock,
        mock_auth_provider: Mock,
    ):
        ready_db.role.find_unique.return_value = None

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.accept_invitation(accept_request())

        assert exc_info.value.status_code == 500
        mock_auth_provider.admin_delete_user.assert_called_once_with("user-1")
        ready_db.userrole.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_without_auth_provider_raises_500(
        self, mock_prisma: Mock, pending_invitation: Mock
    ):
        mock_prisma.invitation.find_unique.return_value = pending_invitation
        mock_prisma.profile.find_unique.return_value = None
        mock_prisma.broker.find_unique.return_value = None
        service = InvitationService(mock_prisma, permission_service=Mock())

        with pytest.raises(HTTPException) as exc_info:
            await service.accept_invitation(accept_request())

        assert exc_info.value.status_code == 500


class TestListAndRevoke:
    @pytest.mark.asyncio
    async def test_list_is_scoped_to_allowed_brokers(
        self,
        invitation_service: InvitationService,
        mock_prisma: Mock,
        pending_invitation: Mock,
    ):
        mock_prisma.invitation.find_many.return_value = [pending_invitation]

        result = await invitation_service.list_invitations(["broker-root"])

        assert [invitation.id for invitation in result] == ["inv-1"]
        mock_prisma.invitation.find_many.assert_called_once_with(
            where={"brokerId": {"in": ["broker-root"]}},
            order={"createdAt": "desc"},
        )

    @pytest.mark.asyncio
    async def test_revoke_pending_invitation(
        self,
        invitation_service: InvitationService,
        mock_prisma: Mock,
        pending_invitation: Mock,
    ):
        mock_prisma.invitation.find_unique.return_value = pending_invitation

        result = await invitation_service.revoke_invitation("inv-1", ["broker-root"])

        assert result.message == "Invitation revoked"
        mock_prisma.invitation.delete.assert_called_once_with(where={"id": "inv-1"})

    @pytest.mark.asyncio
    async def test_revoke_outside_hierarchy_raises_403(
        self,
        invitation_service: InvitationService,
        mock_prisma: Mock,
        pending_invitation: Mock,
    ):
        mock_prisma.invitation.find_unique.return_value = pending_invitation

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.revoke_invitation("inv-1", ["broker-north"])

        assert exc_info.value.status_code == 403
        mock_prisma.invitation.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_revoke_accepted_invitation_raises_400(
        self,
        invitation_service: InvitationService,
        mock_prisma: Mock,
        accepted_invitation: Mock,
    ):
        mock_prisma.invitation.find_unique.return_value = accepted_invitation

        with pytest.raises(HTTPException) as exc_info:
            await invitation_service.revoke_invitation("inv-1", ["broker-root"])

        assert exc_info.value.status_code == 400
        mock_prisma.invitation.delete.assert_not_called()
