"""
Generative Collaborator Error Types — Structured exception hierarchy.

Lets callers distinguish "AI is switched off" (raised before any
network call) from a failed call. Nothing here is retried automatically;
the message of a call failure is the one shown next to the control that
triggered it.
"""


class GenerationError(Exception):
    """Base class for all generative collaborator errors."""
    pass


class GenerationDisabledError(GenerationError):
    """No API credential configured. Raised synchronously, NOT retryable."""

    def __init__(self, message: str = "AI features are disabled: API key is not configured."):
        super().__init__(message)


class GenerationCallError(GenerationError):
    """The call errored (network, quota, API). Carries the user-facing message."""
    pass


class GenerationParseError(GenerationCallError):
    """The model returned JSON that does not fit the expected shape."""
    pass
