"""Feedback and complaint intake."""

import logging
from typing import List, Optional

from database import FEEDBACK, DocumentStore, storage_errors, utcnow
from errors import NotFound, ValidationError
from schemas import Feedback, FeedbackRequest

logger = logging.getLogger(__name__)

FEEDBACK_STATUSES = ("New", "In Progress", "Resolved")


class FeedbackService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def submit(self, user_id: int, payload: FeedbackRequest) -> dict:
        if not payload.user_name or not payload.type or not payload.details or not payload.location:
            raise ValidationError("Incomplete or invalid feedback data. Location is required.")

        feedback = Feedback(
            user_id=user_id,
            user_name=payload.user_name,
            type=payload.type,
            details=payload.details,
            location=payload.location,
            order_reference=payload.order_reference or "N/A",
            status=payload.status or "New",
            timestamp=utcnow(),
        )
        with storage_errors("Server error during feedback submission."):
            created = self.store.create_document(FEEDBACK, feedback)
        logger.info(f"New Feedback submitted: {created['_id']} by {feedback.user_name} (Type: {feedback.type})")
        return created

    def list_all(self) -> List[dict]:
        with storage_errors("Server error fetching feedback."):
            return self.store.get_documents(FEEDBACK, sort=[("timestamp", -1)])

    def set_status(self, feedback_id: str, status: Optional[str], actor: str = "staff") -> dict:
        if status not in FEEDBACK_STATUSES:
            raise ValidationError("Invalid status provided.")
        with storage_errors("Server error updating status."):
            updated = self.store.update_document(FEEDBACK, feedback_id, {"status": status})
            feedback = self.store.get_document_by_id(FEEDBACK, feedback_id) if updated else None
        if not feedback:
            raise NotFound("Feedback not found.")
        logger.info(f"Feedback {feedback_id} status updated to: {status} by {actor}")
        return feedback
