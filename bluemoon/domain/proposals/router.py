"""
Proposal router - FastAPI endpoints for proposals and token-based responses

Handlers that only touch the database are plain functions and run in the
threadpool. Handlers that also send email are async and push their session
work onto worker threads, so one slow row never stalls other requests.
"""

import asyncio
import logging
from html import escape
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...exceptions import NotFoundError, ValidationError
from ...models import User
from ...services.notification_service import send_proposal_invitations, send_response_confirmation
from .schemas import (
    AlternateProposal,
    ProposalCreate,
    ProposalResponses,
    ProposalStatusUpdate,
    ProposalView,
    TokenContext,
)
from .service import INVALID_LINK_MESSAGE, ProposalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/proposals", tags=["Proposals"])
public_router = APIRouter(prefix="/responses", tags=["Proposal Responses"])


def get_proposal_service(db: Session = Depends(get_db)) -> ProposalService:
    """Dependency injection for ProposalService"""
    return ProposalService(db)


# ============================================================================
# OWNER ENDPOINTS
# ============================================================================


@router.post("", response_model=ProposalView, status_code=status.HTTP_201_CREATED)
async def create_proposal(
    data: ProposalCreate,
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    """Create a proposal, issue one response link per recipient and email them"""
    proposal = await asyncio.to_thread(service.create_proposal, data, current_user)

    # Rows are committed; email failures must not undo the proposal
    try:
        await send_proposal_invitations(proposal)
    except Exception as e:
        logger.error(f"❌ Failed to dispatch invitations for proposal {proposal.id}: {e}")

    return await asyncio.to_thread(service.to_view, proposal)


@router.get("", response_model=list[ProposalView])
def list_proposals(
    group_id: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    """Proposals created by the current user, newest first"""
    return service.list_proposals(current_user, group_id)


@router.get("/{proposal_id}", response_model=ProposalView)
def get_proposal(
    proposal_id: int,
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    return service.to_view(service.get_owned_proposal(proposal_id, current_user))


@router.get("/{proposal_id}/responses", response_model=ProposalResponses)
def get_proposal_responses(
    proposal_id: int,
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    """All responses for a proposal. Only the proposer may see them."""
    return service.list_responses(proposal_id, current_user)


@router.patch("/{proposal_id}/status", response_model=ProposalView)
def update_proposal_status(
    proposal_id: int,
    data: ProposalStatusUpdate,
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    proposal = service.set_status(proposal_id, data.status, current_user)
    return service.to_view(proposal)


@router.delete("/{proposal_id}")
def delete_proposal(
    proposal_id: int,
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    service.delete_proposal(proposal_id, current_user)
    return {"message": "Proposal deleted successfully"}


# ============================================================================
# PUBLIC TOKEN ENDPOINTS (no session; the token is the credential)
# ============================================================================


def _render_page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    html = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{escape(title)}</title>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Arial, sans-serif;
           background: #f4f4f4; display: flex; justify-content: center; padding: 60px 20px; }}
    .card {{ background: #fff; border-radius: 8px; padding: 40px; max-width: 480px; text-align: center; }}
    h1 {{ color: #0f172a; font-size: 22px; }}
    p {{ color: #333; line-height: 1.6; }}
  </style>
</head>
<body>
  <div class="card">
    <h1>{escape(title)}</h1>
    <p>{escape(message)}</p>
  </div>
</body>
</html>"""
    return HTMLResponse(content=html, status_code=status_code)


@public_router.get("/by-token/{token}", response_model=None)
async def respond_by_token(
    token: str,
    answer: Optional[str] = Query(None),
    service: ProposalService = Depends(get_proposal_service),
):
    """
    Without ``answer``: the proposal and the holder's current response (JSON).
    With ``answer=yes|no``: record it and show a confirmation page.
    """
    if answer is None:
        context: TokenContext = await asyncio.to_thread(service.get_token_context, token)
        return context

    try:
        response = await asyncio.to_thread(service.respond, token, answer)
    except ValidationError as e:
        return _render_page("Invalid Response", e.message, status_code=400)
    except NotFoundError:
        return _render_page("Link Not Valid", INVALID_LINK_MESSAGE, status_code=404)

    await send_response_confirmation(response)

    proposal = response.proposal
    verdict = "accepted" if response.response == "yes" else "declined"
    return _render_page(
        "Response Recorded",
        f"Thanks {response.user_name}, you {verdict} \"{proposal.title}\" on "
        f"{proposal.proposed_date.isoformat()} at {proposal.proposed_time.strftime('%H:%M')}. "
        "You can change your answer at any time using the links in your email.",
    )


@public_router.post("/by-token/{token}/alternate", response_model=TokenContext)
async def propose_alternate_time(
    token: str,
    data: AlternateProposal,
    service: ProposalService = Depends(get_proposal_service),
):
    """Suggest a different date and time for the proposal"""
    response = await asyncio.to_thread(service.propose_alternate, token, data)
    await send_response_confirmation(response)
    return await asyncio.to_thread(service.get_token_context, token)
