"""
Error types shared by the response pipeline.

Store failures degrade the turn (no custom prompt, no stories); generation
failures are retried within the call budget and otherwise surface to the
caller only as the canned fallback reply.
"""


class MentorError(Exception):
    """Base class for pipeline errors."""


class ConfigLoadError(MentorError):
    """A config or story store could not be reached or returned bad data."""


class GenerationError(MentorError):
    """The language model call failed.

    ``retryable`` is True for timeouts, rate limits, connection problems,
    server errors and empty/malformed completions.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable

    def __repr__(self):
        return f"GenerationError({str(self)!r}, retryable={self.retryable})"
