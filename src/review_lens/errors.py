"""Exceptions raised by review-lens."""


class ReviewLensError(Exception):
    """Base class for all review-lens errors."""


class ConfigError(ReviewLensError):
    """Invalid or unreadable configuration."""


class GitError(ReviewLensError):
    """A git command needed to build the session failed."""


class PatchError(ReviewLensError):
    """A multi-file diff could not be split into per-file patches."""


class SpanExtractionError(ReviewLensError):
    """The full source of a file could not be parsed."""


class LspError(ReviewLensError):
    """Failure talking to a language server."""


class LspTimeoutError(LspError):
    """No response arrived within the request timeout."""


class LspCancelledError(LspError):
    """The request was abandoned because the client was cancelled."""


class LspClosedError(LspError):
    """The language server's stream closed or could not be written."""


class LspResponseError(LspError):
    """The server answered with a JSON-RPC error, or an unusable result."""

    def __init__(self, message: str, code: int = 0):
        super().__init__(message)
        self.code = code
