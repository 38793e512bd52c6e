"""Proposal repository - Database operations for proposals and per-recipient responses"""

import logging
from datetime import date, datetime, time
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from ...exceptions import ConflictError
from ...models import Group, MeetingProposal, ProposalResponse, User
from ...security_utils import generate_response_token
from ...shared.validators import find_duplicates, normalize_email
from .schemas import ResponseSummary, ResponseView

logger = logging.getLogger(__name__)

# Every column except response_token; the owner-facing projection is built from these only
_RESPONSE_VIEW_COLUMNS = (
    ProposalResponse.id,
    ProposalResponse.user_id,
    ProposalResponse.user_name,
    ProposalResponse.user_email,
    ProposalResponse.response,
    ProposalResponse.alternate_date,
    ProposalResponse.alternate_time,
    ProposalResponse.alternate_message,
    ProposalResponse.responded_at,
)


def _live_proposal_ids():
    """Proposals whose group has not been soft-deleted"""
    return (
        select(MeetingProposal.id)
        .join(Group, MeetingProposal.group_id == Group.id)
        .where(Group.deleted_at.is_(None))
    )


def _classify_integrity_error(error: IntegrityError) -> ConflictError:
    message = str(error.orig).lower()
    if "response_token" in message:
        return ConflictError("Could not issue a unique response link. Please try again.", retryable=True)
    if "user_email" in message or "recipient" in message:
        return ConflictError("Each recipient can only be invited once per proposal")
    return ConflictError()


class ProposalRepository:
    """Repository for proposal and response database operations"""

    @staticmethod
    def get_live_group(db: Session, group_id: int) -> Optional[Group]:
        return db.query(Group).filter(Group.id == group_id, Group.deleted_at.is_(None)).first()

    @staticmethod
    def find_users_by_email(db: Session, emails: list[str]) -> dict[str, User]:
        """Registered users among the recipients, keyed by normalized email"""
        if not emails:
            return {}
        users = db.query(User).filter(func.lower(User.email).in_(emails)).all()
        return {normalize_email(user.email): user for user in users}

    @staticmethod
    def create_proposal_with_responses(
        db: Session,
        *,
        group_id: int,
        proposed_by: int,
        title: str,
        description: Optional[str],
        proposed_date: date,
        proposed_time: time,
        recipients: list[dict],
        token_factory: Callable[[], str] = generate_response_token,
    ) -> MeetingProposal:
        """
        Create a proposal and one pending response per recipient in one transaction.

        Each recipient dict carries ``email`` and optionally ``user_id`` and ``name``.
        Either every row commits or none does.
        """
        emails = [normalize_email(r["email"]) for r in recipients]
        duplicates = find_duplicates(emails)
        if duplicates:
            raise ConflictError(f"Recipient invited more than once: {', '.join(duplicates)}")

        try:
            proposal = MeetingProposal(
                group_id=group_id,
                proposed_by=proposed_by,
                title=title,
                description=description,
                proposed_date=proposed_date,
                proposed_time=proposed_time,
                status="pending",
            )
            db.add(proposal)
            db.flush()

            for recipient, email in zip(recipients, emails):
                db.add(
                    ProposalResponse(
                        proposal_id=proposal.id,
                        user_id=recipient.get("user_id"),
                        user_name=recipient.get("name") or email,
                        user_email=email,
                        response="pending",
                        response_token=token_factory(),
                    )
                )
            db.flush()
            db.commit()
        except IntegrityError as e:
            db.rollback()
            conflict = _classify_integrity_error(e)
            logger.warning(f"⚠️ Proposal creation rolled back: {conflict.message}")
            raise conflict from e
        except Exception:
            db.rollback()
            raise

        # Invitations read these after the session work is done
        return (
            db.query(MeetingProposal)
            .options(
                selectinload(MeetingProposal.responses),
                joinedload(MeetingProposal.group),
                joinedload(MeetingProposal.proposer),
            )
            .filter(MeetingProposal.id == proposal.id)
            .one()
        )

    @staticmethod
    def get_proposal(db: Session, proposal_id: int) -> Optional[MeetingProposal]:
        return (
            db.query(MeetingProposal)
            .join(Group, MeetingProposal.group_id == Group.id)
            .filter(MeetingProposal.id == proposal_id, Group.deleted_at.is_(None))
            .first()
        )

    @staticmethod
    def list_proposals_for_owner(
        db: Session, user_id: int, group_id: Optional[int] = None
    ) -> list[MeetingProposal]:
        query = (
            db.query(MeetingProposal)
            .join(Group, MeetingProposal.group_id == Group.id)
            .filter(MeetingProposal.proposed_by == user_id, Group.deleted_at.is_(None))
        )
        if group_id is not None:
            query = query.filter(MeetingProposal.group_id == group_id)
        return query.order_by(MeetingProposal.created_at.desc(), MeetingProposal.id.desc()).all()

    @staticmethod
    def get_by_token(db: Session, token: str) -> Optional[ProposalResponse]:
        """The single lookup path that touches the token column"""
        return (
            db.query(ProposalResponse)
            .options(joinedload(ProposalResponse.proposal).joinedload(MeetingProposal.group))
            .filter(
                ProposalResponse.response_token == token,
                ProposalResponse.proposal_id.in_(_live_proposal_ids()),
            )
            .first()
        )

    @staticmethod
    def update_response(
        db: Session,
        token: str,
        value: str,
        alternate_date: Optional[date] = None,
        alternate_time: Optional[time] = None,
        alternate_message: Optional[str] = None,
    ) -> Optional[ProposalResponse]:
        """
        Overwrite the response for a token with one UPDATE statement.

        Alternate fields are always written, so moving away from ``alternate``
        clears them. Returns None when no live response holds the token.
        """
        updated = (
            db.query(ProposalResponse)
            .filter(
                ProposalResponse.response_token == token,
                ProposalResponse.proposal_id.in_(_live_proposal_ids()),
            )
            .update(
                {
                    ProposalResponse.response: value,
                    ProposalResponse.alternate_date: alternate_date,
                    ProposalResponse.alternate_time: alternate_time,
                    ProposalResponse.alternate_message: alternate_message,
                    ProposalResponse.responded_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
        )
        if not updated:
            db.rollback()
            return None

        db.commit()
        return ProposalRepository.get_by_token(db, token)

    @staticmethod
    def list_responses(db: Session, proposal_id: int) -> list[ResponseView]:
        """Token-free projection of every response to a proposal"""
        rows = (
            db.query(*_RESPONSE_VIEW_COLUMNS)
            .filter(ProposalResponse.proposal_id == proposal_id)
            .order_by(ProposalResponse.id)
            .all()
        )
        return [
            ResponseView(
                id=row.id,
                userId=row.user_id,
                userName=row.user_name,
                userEmail=row.user_email,
                response=row.response,
                alternateDate=row.alternate_date,
                alternateTime=row.alternate_time,
                alternateMessage=row.alternate_message,
                respondedAt=row.responded_at,
            )
            for row in rows
        ]

    @staticmethod
    def summarize(responses: list[ResponseView]) -> ResponseSummary:
        summary = ResponseSummary()
        for response in responses:
            setattr(summary, response.response, getattr(summary, response.response) + 1)
        return summary

    @staticmethod
    def update_proposal_status(db: Session, proposal: MeetingProposal, status: str) -> MeetingProposal:
        proposal.status = status
        db.commit()
        db.refresh(proposal)
        return proposal

    @staticmethod
    def delete_proposal(db: Session, proposal: MeetingProposal) -> None:
        """Delete a proposal; its responses (and so their tokens) go with it"""
        db.delete(proposal)
        db.commit()
