from __future__ import annotations

from typing import Optional


class AppError(Exception):
    status_code = 500
    title = "Something went wrong"

    def __init__(self, message: str = "", reason: Optional[str] = None):
        super().__init__(message or self.title)
        self.message = message or self.title
        self.reason = reason


class NotFound(AppError):
    status_code = 404
    title = "Not found"


class BadRequest(AppError):
    status_code = 400
    title = "Bad request"

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason, reason=reason)


class Unauthorized(AppError):
    status_code = 401
    title = "Unauthorized"


class Forbidden(AppError):
    status_code = 403
    title = "Forbidden"


class RsvpConflict(AppError):
    """Duplicate RSVP for the same event and email, shown to the user as a page."""

    status_code = 200
    title = "Already RSVPed"

    ALREADY_RSVPED = "already_rsvped"
    CURRENTLY_RSVPING = "currently_rsvping"

    def __init__(self, kind: str, email: str):
        if kind == self.ALREADY_RSVPED:
            message = f"{email} has already RSVPed to this event."
        else:
            message = f"{email} is currently RSVPing to this event. Try again in a little while."
        super().__init__(message, reason=kind)
        self.kind = kind
        self.email = email
