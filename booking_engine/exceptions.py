"""
Custom exceptions for the booking engine.
"""


class ConfigurationError(Exception):
    """Raised when a tenant or the gateway/LLM credentials are not configured."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class LanguageModelUnavailable(Exception):
    """Raised when the language model call fails or times out."""

    def __init__(self, message: str = None, quota_exceeded: bool = False):
        self.quota_exceeded = quota_exceeded
        self.message = message or "Language model service unavailable"
        super().__init__(self.message)


class TranscriptionError(Exception):
    """Raised when an audio message cannot be transcribed."""


class ExtractionIncomplete(Exception):
    """Raised when the dialogue does not yet hold a complete, confirmed booking."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class MessagingGatewayError(Exception):
    """Raised when the Evolution API rejects or fails to deliver a message."""

    def __init__(self, message: str, status: int = None):
        self.status = status
        super().__init__(message)


class BookingConflictError(Exception):
    """Raised when a booking overlaps another client's appointment and conflicts are disallowed."""

    def __init__(self, conflict, message: str = None):
        self.conflict = conflict
        self.appointment_id = conflict.id
        self.message = message or f"Requested time overlaps appointment {conflict.id}"
        super().__init__(self.message)
