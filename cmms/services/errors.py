"""
Domain errors raised by the work-tracking services.
Routes never catch these; the app registers handlers that map them to HTTP responses.
"""
import uuid
from typing import Optional


class WorkTrackingError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"detail": self.detail}


class InvalidTransition(WorkTrackingError):
    status_code = 400

    def __init__(self, action: str, status: str, allowed: tuple):
        allowed_text = " or ".join(f"Status={s}" for s in allowed)
        super().__init__(f"{action} allowed only when {allowed_text}.")
        self.action = action
        self.status = status
        self.allowed = allowed


class ConflictingActivity(WorkTrackingError):
    status_code = 409

    def __init__(self, blocker_id: uuid.UUID, blocker_title: str):
        super().__init__(f"Another activity is already in progress: {blocker_title}")
        self.blocker_id = blocker_id
        self.blocker_title = blocker_title

    def to_dict(self) -> dict:
        return {
            "detail": self.detail,
            "blocking_item": {"id": str(self.blocker_id), "title": self.blocker_title},
        }


class NotFound(WorkTrackingError):
    status_code = 404


class ValidationError(WorkTrackingError):
    status_code = 422


class CalendarUnavailable(WorkTrackingError):
    """The working calendar could not resolve a schedule or timezone."""

    status_code = 503

    def __init__(self, detail: str, timezone: Optional[str] = None):
        super().__init__(detail)
        self.timezone = timezone


class ReportCancelled(WorkTrackingError):
    status_code = 499
