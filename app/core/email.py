"""Transactional email via the Resend HTTP API.

Without RESEND_API_KEY the message is logged instead of sent, which keeps
local development and tests free of network calls.
"""
import html
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class EmailError(Exception):
    pass


class EmailService:
    def __init__(self, api_key: Optional[str] = None, sender: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.sender = sender or settings.email_from

    def send(self, to: str, subject: str, text: str, html_body: Optional[str] = None) -> Dict[str, Any]:
        payload = {"from": self.sender, "to": [to], "subject": subject, "text": text}
        if html_body:
            payload["html"] = html_body
        if not self.api_key:
            logger.info(f"Email not sent (no provider configured): to={to} subject={subject!r}")
            return {"success": True, "provider": "console"}
        try:
            response = httpx.post(
                RESEND_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=10.0,
            )
        except httpx.HTTPError as e:
            raise EmailError(f"Resend request failed: {e}") from e
        if response.status_code >= 400:
            raise EmailError(f"Resend API error ({response.status_code})")
        return {"success": True, "provider": "resend", "id": response.json().get("id")}


def get_email_service() -> EmailService:
    return EmailService()


def format_booking_date(booking: Dict[str, Any], pattern: str = "%B %d, %Y") -> str:
    try:
        return datetime.strptime(booking["booking_date"], "%Y-%m-%d").strftime(pattern)
    except (KeyError, TypeError, ValueError):
        return str(booking.get("booking_date"))


def booking_confirmation_email(booking: Dict[str, Any], calendar: Dict[str, Any]) -> Dict[str, str]:
    lines = [
        "BOOKING CONFIRMED",
        "",
        f"Hi {booking.get('customer_name')},",
        "",
        "Thank you for booking with us! Your appointment has been confirmed.",
        "",
        "BOOKING DETAILS:",
        f"- Date: {format_booking_date(booking, '%A, %B %d, %Y')}",
        f"- Time: {booking.get('booking_time')}",
        f"- Duration: {booking.get('duration_minutes')} minutes",
        f"- Timezone: {booking.get('timezone')}",
    ]
    if booking.get("customer_notes"):
        lines.append(f"- Notes: {booking['customer_notes']}")
    lines.append("")
    if booking.get("external_booking_url"):
        lines += [f"View booking details: {booking['external_booking_url']}", ""]
    lines.append("Need to make changes? Please contact us as soon as possible if you need to reschedule or cancel.")
    if calendar.get("send_reminders"):
        lines.append(
            f"You will receive a reminder {calendar.get('reminder_hours_before', 24)} hours before your appointment."
        )
    lines += ["", f"Booking ID: {booking.get('id')}"]
    return {
        "subject": f"Booking Confirmation - {format_booking_date(booking)}",
        "text": "\n".join(lines),
    }


def booking_reminder_email(booking: Dict[str, Any]) -> Dict[str, str]:
    text = "\n".join([
        "APPOINTMENT REMINDER",
        "",
        f"Hi {booking.get('customer_name')},",
        "",
        "This is a friendly reminder about your upcoming appointment.",
        "",
        "APPOINTMENT DETAILS:",
        f"- Date: {format_booking_date(booking, '%A, %B %d, %Y')}",
        f"- Time: {booking.get('booking_time')}",
        f"- Duration: {booking.get('duration_minutes')} minutes",
        f"- Timezone: {booking.get('timezone')}",
        "",
        "Please make sure you're available at the scheduled time. "
        "If you need to make any changes, please contact us as soon as possible.",
        "",
        f"Booking ID: {booking.get('id')}",
    ])
    return {"subject": f"Reminder: Upcoming Appointment - {format_booking_date(booking)}", "text": text}


def booking_cancellation_email(booking: Dict[str, Any], reason: Optional[str] = None) -> Dict[str, str]:
    lines = [
        "BOOKING CANCELLED",
        "",
        f"Hi {booking.get('customer_name')},",
        "",
        f"Your appointment scheduled for {format_booking_date(booking, '%A, %B %d, %Y')} "
        f"at {booking.get('booking_time')} has been cancelled.",
        "",
    ]
    if reason:
        lines += [f"Reason: {reason}", ""]
    lines += [
        "If you'd like to reschedule, please feel free to book a new appointment at your convenience.",
        "",
        "We apologize for any inconvenience.",
        "",
        f"Booking ID: {booking.get('id')}",
    ]
    return {"subject": f"Booking Cancelled - {format_booking_date(booking)}", "text": "\n".join(lines)}


def invitation_email(name: str, agent_name: str, test_link: str, expires_in_days: int,
                     inviter_name: str = "Someone") -> Dict[str, str]:
    text = "\n".join([
        f"Hi {name},",
        "",
        f"{inviter_name} has invited you to test the AI agent \"{agent_name}\".",
        "",
        f"Open your personal test link: {test_link}",
        "",
        f"This link expires in {expires_in_days} days.",
    ])
    return {"subject": f"You're invited to test {agent_name}", "text": text}


def feedback_notification_email(feedback: Dict[str, Any], attachments: List[Dict[str, Any]],
                                feedback_id: Optional[str] = None) -> Dict[str, str]:
    parts = [
        "<h2>New Feedback Received</h2>",
        f"<p><strong>From:</strong> {html.escape(feedback['user_name'])} ({html.escape(feedback.get('email') or 'No Email')})</p>",
        f"<p><strong>Type:</strong> {html.escape(feedback['type'])}</p>",
        f"<p><strong>Subject:</strong> {html.escape(feedback['subject'])}</p>",
        f"<p><strong>Rating:</strong> {feedback.get('rating') or 'N/A'}</p>",
        "<hr/><p><strong>Message:</strong></p>",
        f"<p style=\"white-space: pre-wrap;\">{html.escape(feedback['message'])}</p>",
    ]
    if attachments:
        items = "".join(
            f"<li><a href=\"{a['url']}\">{html.escape(a['name'])}</a> ({a['size'] / 1024:.1f} KB)</li>"
            for a in attachments
        )
        parts.append(f"<hr/><p><strong>Attachments:</strong></p><ul>{items}</ul>")
    if feedback_id:
        parts.append(f"<hr/><p style=\"color:gray;\"><strong>Feedback ID:</strong> {feedback_id}</p>")
    return {
        "subject": f"Feedback: {feedback['subject']}",
        "text": feedback["message"],
        "html": "".join(parts),
    }
