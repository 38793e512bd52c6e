"""
MJML Email Templates
Meeting proposal invitations and response confirmations
"""

from datetime import date, time
from html import escape
from typing import Optional

THEME = {
    "primary": "#667eea",
    "primary_dark": "#764ba2",
    "background": "#f4f4f4",
    "text_primary": "#0f172a",
    "text_secondary": "#333333",
    "text_muted": "#6b7280",
    "border": "#e2e8f0",
    "success": "#10b981",
    "warning": "#f59e0b",
    "danger": "#ef4444",
}

RESPONSE_LABELS = {
    "yes": "✅ You accepted the meeting invitation",
    "no": "❌ You declined the meeting invitation",
    "alternate": "🔄 You proposed an alternate time",
}


def format_meeting_date(value: date) -> str:
    return value.strftime("%A, %B %d, %Y")


def format_meeting_time(value: time) -> str:
    return value.strftime("%H:%M")


def get_base_template(title: str, preview_text: str, content_sections: str) -> str:
    """Base MJML template wrapper for all emails"""
    return f"""
    <mjml>
      <mj-head>
        <mj-title>{escape(title)}</mj-title>
        <mj-preview>{escape(preview_text)}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="{THEME['primary']}" padding="30px 20px">
          <mj-column>
            <mj-text align="center" font-size="24px" font-weight="600" color="#ffffff" padding="0">
              📅 {escape(title)}
            </mj-text>
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="30px 20px">
          <mj-column>
            {content_sections}
          </mj-column>
        </mj-section>

        <mj-section padding="20px">
          <mj-column>
            <mj-text align="center" font-size="12px" color="{THEME['text_muted']}" padding="0">
              Sent via Blue Moon Scheduler. This is an automated message. Please do not reply to this email.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _meeting_details(
    title: str, proposed_date: date, proposed_time: time, description: Optional[str] = None
) -> str:
    description_line = (
        f"<p><strong>📄 Description:</strong> {escape(description)}</p>" if description else ""
    )
    return f"""
            <mj-text padding="15px" container-background-color="#f8f9fa" border-left="4px solid {THEME['primary']}">
              <p><strong>📝 Title:</strong> {escape(title)}</p>
              {description_line}
              <p><strong>📅 Proposed Date:</strong> {format_meeting_date(proposed_date)}</p>
              <p><strong>🕐 Proposed Time:</strong> {format_meeting_time(proposed_time)}</p>
            </mj-text>
    """


def proposal_invitation_template(
    proposer_name: str,
    group_name: str,
    title: str,
    description: Optional[str],
    proposed_date: date,
    proposed_time: time,
    yes_url: str,
    no_url: str,
    alternate_url: str,
) -> str:
    """Invitation with one-click yes/no links and a link to the alternate-time form"""
    content = f"""
            <mj-text>
              <strong>{escape(proposer_name)}</strong> has proposed a meeting time for <strong>{escape(group_name)}</strong>
            </mj-text>
            {_meeting_details(title, proposed_date, proposed_time, description)}
            <mj-text font-size="16px" padding-top="25px">Can you make it?</mj-text>
            <mj-button href="{escape(yes_url)}" background-color="{THEME['success']}" color="#ffffff" font-weight="600" border-radius="6px">
              ✅ Yes, I can attend
            </mj-button>
            <mj-button href="{escape(no_url)}" background-color="{THEME['danger']}" color="#ffffff" font-weight="600" border-radius="6px">
              ❌ No, I can't attend
            </mj-button>
            <mj-button href="{escape(alternate_url)}" background-color="{THEME['warning']}" color="#ffffff" font-weight="600" border-radius="6px">
              🔄 Propose Alternate Time
            </mj-button>
            <mj-text font-size="13px" color="{THEME['text_muted']}" padding-top="30px">
              Your response will be shared with the group organizer to help coordinate the best time for everyone.
              Anyone with these links can answer on your behalf, so please don't forward this email.
            </mj-text>
    """
    return get_base_template("Meeting Time Proposal", f"{proposer_name} proposed: {title}", content)


def response_confirmation_template(
    recipient_name: str,
    title: str,
    proposed_date: date,
    proposed_time: time,
    response: str,
) -> str:
    content = f"""
            <mj-text>Hi {escape(recipient_name)},</mj-text>
            <mj-text>{RESPONSE_LABELS.get(response, "Your response was recorded")}</mj-text>
            {_meeting_details(title, proposed_date, proposed_time)}
            <mj-text>The organizer has been notified of your response.</mj-text>
    """
    return get_base_template("Response Confirmed", f"Response confirmed: {title}", content)
