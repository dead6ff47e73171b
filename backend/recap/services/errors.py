"""
Error taxonomy for the recap pipeline.

Every error is terminal for the operation that raised it; nothing in
the pipeline retries on its own. Each error carries the context a caller
needs to show a specific message (URL, HTTP status, engine output).
"""


class RecapError(Exception):
    """
    Base exception for recap pipeline errors.

    Attributes:
        message: Error description
        original_error: Underlying exception if available
    """

    def __init__(self, message: str, original_error: Exception | None = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)

    def _context(self) -> dict[str, object]:
        return {}

    def __str__(self) -> str:
        parts = [self.message]
        for key, value in self._context().items():
            if value is not None:
                parts.append(f"{key}={value}")
        return " | ".join(parts)


class RemoteServiceError(RecapError):
    """
    Remote service rejected a request or returned an unusable payload.

    Attributes:
        status_code: HTTP status code if available
        response_body: Response body (truncated) if available
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.response_body = response_body

    def _context(self) -> dict[str, object]:
        return {"status": self.status_code}


class AuthRequestFailed(RemoteServiceError):
    """Requesting a one-time code for a phone number failed."""


class AuthVerifyFailed(RemoteServiceError):
    """Verifying a one-time code failed."""


class RetrievalFailed(RemoteServiceError):
    """Fetching diary records failed."""


class Unauthenticated(RecapError):
    """An operation needing a credential was called without one."""


class EngineLoadFailed(RecapError):
    """
    The encoding engine could not be bootstrapped.

    Attributes:
        binary: Engine binary that was looked up
    """

    def __init__(self, message: str, binary: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.binary = binary

    def _context(self) -> dict[str, object]:
        return {"binary": self.binary}


class AssetFetchFailed(RecapError):
    """
    Downloading an image or audio asset failed.

    Attributes:
        url: Asset URL that failed
        status_code: HTTP status code if the server answered
    """

    def __init__(
        self,
        message: str,
        url: str,
        status_code: int | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.url = url
        self.status_code = status_code

    def _context(self) -> dict[str, object]:
        return {"url": self.url, "status": self.status_code}


class EncodeFailed(RecapError):
    """
    The engine finished an encode command unsuccessfully.

    Attributes:
        return_code: Engine exit code (None if it never ran)
        diagnostics: Tail of the engine's diagnostic output
    """

    def __init__(
        self,
        message: str,
        return_code: int | None = None,
        diagnostics: str = "",
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.return_code = return_code
        self.diagnostics = diagnostics

    def _context(self) -> dict[str, object]:
        return {"code": self.return_code}


class NothingToEncode(EncodeFailed):
    """Job has no frames; the engine is not invoked."""


class OutputMissing(RecapError):
    """
    A file expected in the engine workspace does not exist.

    Attributes:
        name: Missing file name
    """

    def __init__(self, message: str, name: str, **kwargs):
        super().__init__(message, **kwargs)
        self.name = name

    def _context(self) -> dict[str, object]:
        return {"name": self.name}
