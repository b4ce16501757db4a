"""
Engine error taxonomy.

Only ValidationError and SubmissionError are meant to reach the respondent.
Persistence and scoring failures are absorbed by the session controller and
the profile engine, which log them and degrade.
"""


class FlowError(Exception):
    """Base class for every error raised by the card flow engine."""


class ValidationError(FlowError):
    # required field unanswered at navigation/submit time
    def __init__(self, message: str, field_id: str | None = None):
        super().__init__(message)
        self.field_id = field_id


class PersistenceError(FlowError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SessionNotFoundError(PersistenceError):
    """Token unknown to the remote store, or the session expired."""


class RateLimitError(PersistenceError):
    """HTTP 429 from the remote store. Persistence stays off for the session."""


class ScoringError(FlowError):
    pass


class SubmissionError(FlowError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
