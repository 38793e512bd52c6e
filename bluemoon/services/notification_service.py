"""
Proposal Notification Service
Emails every recipient their personal response links, and confirms answers

Delivery is best-effort: the proposal and its responses are already committed
when these run, so a failed send is logged and reported, never raised.
"""

import logging
from urllib.parse import quote

from ..config import BASE_URL, FRONTEND_URL
from ..models import MeetingProposal, ProposalResponse

logger = logging.getLogger(__name__)


def build_response_links(token: str) -> dict:
    """Yes/no links answer directly; the alternate link opens the form in the frontend"""
    base = BASE_URL.rstrip("/")
    safe_token = quote(token, safe="")
    return {
        "yes_url": f"{base}/responses/by-token/{safe_token}?answer=yes",
        "no_url": f"{base}/responses/by-token/{safe_token}?answer=no",
        "alternate_url": f"{FRONTEND_URL.rstrip('/')}/meeting-response?token={safe_token}",
    }


async def send_proposal_invitations(proposal: MeetingProposal) -> dict:
    """
    Send one invitation per response row

    Args:
        proposal: Committed proposal with its responses, group and proposer loaded

    Returns:
        Dict with sent/failed counts and per-recipient errors
    """
    from ..email_service import send_proposal_invitation_email

    result = {"sent": 0, "failed": 0, "errors": {}}
    proposer = proposal.proposer
    proposer_name = (proposer.name or proposer.email) if proposer else "A group member"
    group_name = proposal.group.name if proposal.group else "your group"

    for response in proposal.responses:
        try:
            logger.info(f"📧 Sending proposal {proposal.id} invitation to {response.user_email}")
            await send_proposal_invitation_email(
                to=response.user_email,
                proposer_name=proposer_name,
                group_name=group_name,
                title=proposal.title,
                description=proposal.description,
                proposed_date=proposal.proposed_date,
                proposed_time=proposal.proposed_time,
                **build_response_links(response.response_token),
            )
            result["sent"] += 1
        except Exception as e:
            result["failed"] += 1
            result["errors"][response.user_email] = str(e)
            logger.error(f"❌ Failed to send proposal invitation to {response.user_email}: {e}")

    logger.info(
        f"📨 Proposal {proposal.id} invitations: {result['sent']} sent, {result['failed']} failed"
    )
    return result


async def send_response_confirmation(response: ProposalResponse) -> bool:
    """Confirm a recorded answer to the token holder. Returns False when the send failed."""
    from ..email_service import send_response_confirmation_email

    proposal = response.proposal
    try:
        await send_response_confirmation_email(
            to=response.user_email,
            recipient_name=response.user_name,
            title=proposal.title,
            proposed_date=proposal.proposed_date,
            proposed_time=proposal.proposed_time,
            response=response.response,
        )
        return True
    except Exception as e:
        logger.error(f"❌ Failed to send response confirmation to {response.user_email}: {e}")
        return False
