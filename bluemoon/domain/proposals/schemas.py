"""Proposal domain schemas - Pydantic models for validation"""

from datetime import date, datetime, time
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...shared.validators import validate_email

ProposalStatus = Literal["pending", "accepted", "rejected"]
ResponseValue = Literal["pending", "yes", "no", "alternate"]


class ProposalCreate(BaseModel):
    """Schema for creating a proposal and inviting recipients"""

    groupId: int
    title: str = Field(max_length=255)
    description: Optional[str] = None
    proposedDate: date
    proposedTime: time
    recipients: list[str] = Field(min_length=1)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if not v or not v.strip():
            raise ValueError("Title is required")
        return v.strip()

    @field_validator("recipients")
    @classmethod
    def validate_recipients(cls, v):
        if any(not email or not email.strip() for email in v):
            raise ValueError("Recipient email is required")
        return [validate_email(email) for email in v]


class AlternateProposal(BaseModel):
    """Schema for a recipient suggesting another time"""

    model_config = ConfigDict(populate_by_name=True)

    alternate_date: date = Field(alias="date")
    alternate_time: time = Field(alias="time")
    message: Optional[str] = Field(default=None, max_length=2000)


class ProposalStatusUpdate(BaseModel):
    status: ProposalStatus


class ResponseView(BaseModel):
    """One recipient's answer as seen by the proposer. Never carries the token."""

    id: int
    userId: Optional[int] = None
    userName: str
    userEmail: str
    response: ResponseValue
    alternateDate: Optional[date] = None
    alternateTime: Optional[time] = None
    alternateMessage: Optional[str] = None
    respondedAt: Optional[datetime] = None


class ResponseSummary(BaseModel):
    pending: int = 0
    yes: int = 0
    no: int = 0
    alternate: int = 0


class ProposalView(BaseModel):
    id: int
    groupId: int
    proposedBy: int
    title: str
    description: Optional[str] = None
    proposedDate: date
    proposedTime: time
    status: ProposalStatus
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    responses: list[ResponseView] = []
    summary: ResponseSummary = ResponseSummary()


class ProposalResponses(BaseModel):
    proposalId: int
    responses: list[ResponseView]
    summary: ResponseSummary


class TokenContext(BaseModel):
    """What a token holder may see: the proposal and their own current answer"""

    proposalId: int
    title: str
    description: Optional[str] = None
    proposedDate: date
    proposedTime: time
    groupName: Optional[str] = None
    proposedByName: Optional[str] = None
    userName: str
    currentResponse: ResponseValue
    alternateDate: Optional[date] = None
    alternateTime: Optional[time] = None
    alternateMessage: Optional[str] = None
