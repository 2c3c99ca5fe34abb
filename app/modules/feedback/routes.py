from fastapi import APIRouter, Depends, Request
from starlette.datastructures import UploadFile
from app.database.supabase_client import get_service_supabase
from app.modules.feedback.schemas import FeedbackResponse
from app.modules.feedback.service import Attachment, FeedbackService, parse_rating
from app.core.dependencies import get_optional_user
from supabase import Client
from typing import Dict, Optional

router = APIRouter(prefix="/feedback", tags=["feedback"])


def get_feedback_service(supabase: Client = Depends(get_service_supabase)) -> FeedbackService:
    return FeedbackService(supabase)


@router.post("", response_model=FeedbackResponse)
async def submit_feedback(
    request: Request,
    current_user: Optional[Dict] = Depends(get_optional_user),
    service: FeedbackService = Depends(get_feedback_service)
):
    """Submit product feedback (multipart form, attachments as file_* fields)"""
    form = await request.form()
    feedback = {
        "type": form.get("type") or "general",
        "subject": form.get("subject") or "No Subject",
        "message": form.get("message") or "",
        "rating": parse_rating(form.get("rating")),
        "email": form.get("email") or (current_user or {}).get("email"),
        "user_name": form.get("userName") or "Anonymous",
    }
    files = []
    for key, value in form.multi_items():
        if key.startswith("file_") and isinstance(value, UploadFile) and value.filename:
            files.append(Attachment(value.filename, value.content_type or "", await value.read()))
    return service.submit(feedback, files, user_id=(current_user or {}).get("id"))
