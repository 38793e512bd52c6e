"""
Proposal service - response protocol and owner visibility rules

Token holders mutate exactly one response; nothing else about the caller is
consulted. Owners read aggregated, token-free responses through their session.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ...models import MeetingProposal, ProposalResponse, User
from ...security_utils import generate_response_token, is_well_formed_token, strip_html, token_fingerprint
from .repository import ProposalRepository
from .schemas import (
    AlternateProposal,
    ProposalCreate,
    ProposalResponses,
    ProposalView,
    TokenContext,
)

logger = logging.getLogger(__name__)

# Token collisions are practically unreachable; a couple of retries is plenty
MAX_CREATE_ATTEMPTS = 3

# Same wording for unknown, malformed and deleted tokens
INVALID_LINK_MESSAGE = "This link may have expired or is invalid."

LINK_ANSWERS = ("yes", "no")


class ProposalService:
    """Service layer for the proposal/response protocol"""

    def __init__(self, db: Session, token_factory=generate_response_token):
        self.db = db
        self.repo = ProposalRepository()
        self.token_factory = token_factory

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    def create_proposal(self, data: ProposalCreate, user: User) -> MeetingProposal:
        """Create a proposal with one tokenised response per recipient"""
        logger.info(f"📝 Creating proposal for group {data.groupId} by user {user.id}")

        title = strip_html(data.title)
        if not title:
            raise ValidationError("Title is required")

        group = self.repo.get_live_group(self.db, data.groupId)
        if not group:
            raise NotFoundError("Group not found")

        known_users = self.repo.find_users_by_email(self.db, data.recipients)
        recipients = []
        for email in data.recipients:
            member = known_users.get(email)
            recipients.append(
                {
                    "email": email,
                    "user_id": member.id if member else None,
                    "name": (member.name if member and member.name else email),
                }
            )

        for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
            try:
                proposal = self.repo.create_proposal_with_responses(
                    self.db,
                    group_id=group.id,
                    proposed_by=user.id,
                    title=title,
                    description=strip_html(data.description) or None,
                    proposed_date=data.proposedDate,
                    proposed_time=data.proposedTime,
                    recipients=recipients,
                    token_factory=self.token_factory,
                )
            except ConflictError as e:
                if e.retryable and attempt < MAX_CREATE_ATTEMPTS:
                    logger.warning(f"⚠️ Response token collision, retrying ({attempt}/{MAX_CREATE_ATTEMPTS})")
                    continue
                raise
            logger.info(f"✅ Created proposal {proposal.id} with {len(recipients)} responses")
            return proposal

        # Unreachable: the last attempt either returns or raises
        raise ConflictError(retryable=True)

    def get_owned_proposal(self, proposal_id: int, user: User) -> MeetingProposal:
        proposal = self.repo.get_proposal(self.db, proposal_id)
        if not proposal:
            raise NotFoundError("Proposal not found")
        if proposal.proposed_by != user.id:
            logger.warning(f"⚠️ User {user.id} denied access to proposal {proposal_id}")
            raise ForbiddenError("Not authorized to view responses")
        return proposal

    def list_responses(self, proposal_id: int, user: User) -> ProposalResponses:
        """Aggregated responses for the proposer only; tokens never included"""
        proposal = self.get_owned_proposal(proposal_id, user)
        responses = self.repo.list_responses(self.db, proposal.id)
        return ProposalResponses(
            proposalId=proposal.id,
            responses=responses,
            summary=self.repo.summarize(responses),
        )

    def to_view(self, proposal: MeetingProposal) -> ProposalView:
        responses = self.repo.list_responses(self.db, proposal.id)
        return ProposalView(
            id=proposal.id,
            groupId=proposal.group_id,
            proposedBy=proposal.proposed_by,
            title=proposal.title,
            description=proposal.description,
            proposedDate=proposal.proposed_date,
            proposedTime=proposal.proposed_time,
            status=proposal.status,
            createdAt=proposal.created_at,
            updatedAt=proposal.updated_at,
            responses=responses,
            summary=self.repo.summarize(responses),
        )

    def list_proposals(self, user: User, group_id: Optional[int] = None) -> list[ProposalView]:
        proposals = self.repo.list_proposals_for_owner(self.db, user.id, group_id)
        return [self.to_view(p) for p in proposals]

    def set_status(self, proposal_id: int, status: str, user: User) -> MeetingProposal:
        """Owner records the outcome; it is never derived from the responses"""
        proposal = self.get_owned_proposal(proposal_id, user)
        logger.info(f"🔄 Proposal {proposal.id} status {proposal.status} -> {status}")
        return self.repo.update_proposal_status(self.db, proposal, status)

    def delete_proposal(self, proposal_id: int, user: User) -> None:
        proposal = self.get_owned_proposal(proposal_id, user)
        self.repo.delete_proposal(self.db, proposal)
        logger.info(f"🗑️ Deleted proposal {proposal_id} and invalidated its response links")

    # ------------------------------------------------------------------
    # Token holder operations (public)
    # ------------------------------------------------------------------

    def _lookup(self, token: str) -> ProposalResponse:
        if not is_well_formed_token(token):
            raise NotFoundError(INVALID_LINK_MESSAGE)
        response = self.repo.get_by_token(self.db, token)
        if not response:
            logger.info(f"🔍 Unknown response token {token_fingerprint(token)}")
            raise NotFoundError(INVALID_LINK_MESSAGE)
        return response

    def get_token_context(self, token: str) -> TokenContext:
        response = self._lookup(token)
        proposal = response.proposal
        return TokenContext(
            proposalId=proposal.id,
            title=proposal.title,
            description=proposal.description,
            proposedDate=proposal.proposed_date,
            proposedTime=proposal.proposed_time,
            groupName=proposal.group.name if proposal.group else None,
            proposedByName=(proposal.proposer.name or proposal.proposer.email) if proposal.proposer else None,
            userName=response.user_name,
            currentResponse=response.response,
            alternateDate=response.alternate_date,
            alternateTime=response.alternate_time,
            alternateMessage=response.alternate_message,
        )

    def respond(self, token: str, answer: Optional[str]) -> ProposalResponse:
        """
        Record a yes/no answer from an emailed link.

        Repeat visits overwrite the previous answer (latest wins) and clear any
        alternate suggestion.
        """
        if answer not in LINK_ANSWERS:
            raise ValidationError('Response must be "yes" or "no".')
        if not is_well_formed_token(token):
            raise NotFoundError(INVALID_LINK_MESSAGE)

        response = self.repo.update_response(self.db, token, answer)
        if not response:
            logger.info(f"🔍 Unknown response token {token_fingerprint(token)}")
            raise NotFoundError(INVALID_LINK_MESSAGE)

        logger.info(f"✅ Response {response.id} set to {answer}")
        return response

    def propose_alternate(self, token: str, alternate: AlternateProposal) -> ProposalResponse:
        """Move a response to ``alternate`` and store the suggested date, time and message"""
        if not is_well_formed_token(token):
            raise NotFoundError(INVALID_LINK_MESSAGE)

        response = self.repo.update_response(
            self.db,
            token,
            "alternate",
            alternate_date=alternate.alternate_date,
            alternate_time=alternate.alternate_time,
            alternate_message=strip_html(alternate.message) or None,
        )
        if not response:
            logger.info(f"🔍 Unknown response token {token_fingerprint(token)}")
            raise NotFoundError(INVALID_LINK_MESSAGE)

        logger.info(f"✅ Response {response.id} proposed alternate {alternate.alternate_date}")
        return response
