import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from supabase import Client

from app.config import settings
from app.core.email import EmailService, feedback_notification_email
from app.modules.feedback.schemas import FeedbackResponse

logger = logging.getLogger(__name__)

FEEDBACK_BUCKET = "feedback-attachments"
MAX_ATTACHMENT_BYTES = 5 * 1024 * 1024
ALLOWED_ATTACHMENT_TYPES = ("image/png", "image/jpeg", "image/gif", "application/pdf")


@dataclass
class Attachment:
    name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def parse_rating(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value else None
    except ValueError:
        return None


class FeedbackService:
    def __init__(self, supabase: Client, email_service: Optional[EmailService] = None):
        self.supabase = supabase
        self.email = email_service or EmailService()

    def upload_attachments(self, files: List[Attachment]) -> List[Dict[str, Any]]:
        """Uploads allowed files; oversized or unsupported files are skipped."""
        uploaded = []
        bucket = self.supabase.storage.from_(FEEDBACK_BUCKET)
        for f in files:
            if f.size > MAX_ATTACHMENT_BYTES or f.content_type not in ALLOWED_ATTACHMENT_TYPES:
                logger.info(f"Skipping feedback attachment {f.name} ({f.content_type}, {f.size} bytes)")
                continue
            path = f"feedback/{int(time.time() * 1000)}-{f.name}"
            try:
                bucket.upload(path, f.data, {"content-type": f.content_type})
            except Exception as e:
                logger.error(f"Upload error for {f.name}: {e}")
                continue
            uploaded.append({
                "name": f.name,
                "type": f.content_type,
                "size": f.size,
                "url": bucket.get_public_url(path),
            })
        return uploaded

    def submit(self, feedback: Dict[str, Any], files: List[Attachment],
               user_id: Optional[str] = None) -> FeedbackResponse:
        try:
            attachments = self.upload_attachments(files)
            result = self.supabase.table("feedback").insert({
                "user_id": user_id,
                "name": feedback["user_name"],
                "email": feedback.get("email"),
                "type": feedback["type"],
                "subject": feedback["subject"],
                "message": feedback["message"],
                "rating": feedback.get("rating"),
                "attachments": attachments,
            }).execute()
            saved = result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"Feedback API error: {e}")
            raise HTTPException(status_code=500, detail={"success": False, "error": "Failed to submit feedback"})

        feedback_id = saved.get("id") if saved else None
        self._notify(feedback, attachments, feedback_id)
        return FeedbackResponse(feedbackId=feedback_id)

    def _notify(self, feedback: Dict[str, Any], attachments: List[Dict[str, Any]],
                feedback_id: Optional[str]) -> None:
        receiver = settings.feedback_receiver or settings.email_from
        message = feedback_notification_email(feedback, attachments, feedback_id)
        try:
            self.email.send(receiver, message["subject"], message["text"], html_body=message["html"])
        except Exception as e:
            logger.error(f"Failed to send feedback notification for {feedback_id}: {e}")
