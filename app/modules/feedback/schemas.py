from pydantic import BaseModel
from typing import Optional


class FeedbackResponse(BaseModel):
    success: bool = True
    message: str = "Feedback submitted successfully"
    feedbackId: Optional[str] = None
