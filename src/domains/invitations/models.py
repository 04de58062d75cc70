# src/domains/invitations/models.py
from datetime import datetime
from typing import Optional

from prisma.enums import InvitationStatus
from prisma.models import Invitation
from pydantic import BaseModel, EmailStr, Field


class SendInvitationRequest(BaseModel):
    email: EmailStr
    child_broker_name: str = Field(min_length=2, max_length=100)
    child_broker_description: Optional[str] = Field(default=None, max_length=500)


class AcceptInvitationRequest(BaseModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    cedula_ruc: str = Field(min_length=10, max_length=13)
    phone: Optional[str] = Field(default=None, min_length=8, max_length=20)


class InvitationResponse(BaseModel):
    id: str
    email: str
    broker_id: str
    invited_by: str
    child_broker_name: str
    child_broker_description: Optional[str] = None
    status: str
    expires_at: datetime
    created_at: Optional[datetime] = None

    @classmethod
    def from_prisma(cls, invitation: Invitation) -> "InvitationResponse":
        return cls(
            id=invitation.id,
            email=invitation.email,
            broker_id=invitation.brokerId,
            invited_by=invitation.invitedBy,
            child_broker_name=invitation.childBrokerName,
            child_broker_description=invitation.childBrokerDescription,
            status=InvitationStatus(invitation.status).value,
            expires_at=invitation.expiresAt,
            created_at=invitation.createdAt,
        )


class SendInvitationResponse(BaseModel):
    message: str
    invitation: InvitationResponse
    token: str
    accept_url: str


class AcceptInvitationResponse(BaseModel):
    message: str
    user_id: str
    broker_id: str
    broker_name: str
