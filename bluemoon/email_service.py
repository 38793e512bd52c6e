"""
Email Service using Resend
Compiles MJML templates to responsive HTML and sends them
"""

import asyncio
import logging
from datetime import date, time
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import proposal_invitation_template, response_confirmation_template

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailDeliveryError(Exception):
    """Raised when an email could not be handed to the provider"""


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns a dict-like object with 'html' and 'errors' keys
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        return str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise EmailDeliveryError(f"Failed to compile MJML template: {str(e)}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise EmailDeliveryError("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    try:
        logger.info(f"📧 Sending email via Resend to {len(recipients)} recipient(s)")
        # The Resend SDK is synchronous
        response = await asyncio.to_thread(
            resend.Emails.send,
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            },
        )
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error: {e}")
        raise EmailDeliveryError(f"Failed to send email: {str(e)}") from e


async def send_proposal_invitation_email(
    to: str,
    proposer_name: str,
    group_name: str,
    title: str,
    description: Optional[str],
    proposed_date: date,
    proposed_time: time,
    yes_url: str,
    no_url: str,
    alternate_url: str,
) -> dict:
    """Send a meeting proposal with the recipient's personal response links"""
    mjml_content = proposal_invitation_template(
        proposer_name=proposer_name,
        group_name=group_name,
        title=title,
        description=description,
        proposed_date=proposed_date,
        proposed_time=proposed_time,
        yes_url=yes_url,
        no_url=no_url,
        alternate_url=alternate_url,
    )
    return await send_email(to=to, subject=f"Meeting Proposal: {title}", mjml_content=mjml_content)


async def send_response_confirmation_email(
    to: str,
    recipient_name: str,
    title: str,
    proposed_date: date,
    proposed_time: time,
    response: str,
) -> dict:
    mjml_content = response_confirmation_template(
        recipient_name=recipient_name,
        title=title,
        proposed_date=proposed_date,
        proposed_time=proposed_time,
        response=response,
    )
    return await send_email(to=to, subject=f"Response Confirmed: {title}", mjml_content=mjml_content)
