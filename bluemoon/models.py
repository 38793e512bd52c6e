from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

PROPOSAL_STATUSES = ("pending", "accepted", "rejected")
RESPONSE_VALUES = ("pending", "yes", "no", "alternate")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Group(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    deleted_at = Column(DateTime, nullable=True)  # Soft delete
    created_at = Column(DateTime, server_default=func.now())

    proposals = relationship(
        "MeetingProposal", back_populates="group", cascade="all, delete-orphan", passive_deletes=True
    )


class MeetingProposal(Base):
    __tablename__ = "meeting_proposals"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(
        Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    proposed_by = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    proposed_date = Column(Date, nullable=False, index=True)
    proposed_time = Column(Time, nullable=False)
    status = Column(String(20), default="pending", nullable=False, index=True)  # pending, accepted, rejected
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    group = relationship("Group", back_populates="proposals")
    proposer = relationship("User", foreign_keys=[proposed_by])
    responses = relationship(
        "ProposalResponse",
        back_populates="proposal",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ProposalResponse.id",
    )


class ProposalResponse(Base):
    __tablename__ = "proposal_responses"

    id = Column(Integer, primary_key=True, index=True)
    proposal_id = Column(
        Integer, ForeignKey("meeting_proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Informational only - never used for access control
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    user_name = Column(String(255), nullable=False)
    user_email = Column(String(255), nullable=False, index=True)
    response = Column(String(20), default="pending", nullable=False, index=True)  # pending, yes, no, alternate
    alternate_date = Column(Date, nullable=True)
    alternate_time = Column(Time, nullable=True)
    alternate_message = Column(Text, nullable=True)
    # Sole credential for mutating this row
    response_token = Column(String(255), nullable=False)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    proposal = relationship("MeetingProposal", back_populates="responses")

    __table_args__ = (
        UniqueConstraint("response_token", name="uq_proposal_responses_response_token"),
        UniqueConstraint("proposal_id", "user_email", name="uq_proposal_responses_recipient"),
    )
