"""
Errors raised while answering a formatting request.

Each error ends the request it belongs to. Handlers let them propagate so
that pygls answers the client with an error response instead of leaving
the request pending. They are ``JsonRpcException`` subclasses, so the
response carries each class's own ``CODE``.
"""

from __future__ import annotations

from lsprotocol.types import ErrorCodes, LSPErrorCodes
from pygls.exceptions import JsonRpcException


class FormatterBridgeError(JsonRpcException):
    """Base class for all formatting errors."""

    CODE = LSPErrorCodes.RequestFailed.value

    def __init__(self, message: str) -> None:
        super().__init__(message=message)


class DocumentNotFound(FormatterBridgeError):
    """Formatting was requested for a URI that is not open."""

    CODE = ErrorCodes.InvalidParams.value

    def __init__(self, uri: str) -> None:
        super().__init__(f"Document not open: {uri}")
        self.uri = uri


class InvalidSettings(FormatterBridgeError):
    """The client sent formatter settings that cannot be used."""

    def __init__(self, uri: str, reason: str) -> None:
        super().__init__(f"Invalid formatter settings for {uri}: {reason}")
        self.uri = uri
        self.reason = reason


class TemporaryFileIOError(FormatterBridgeError):
    """The temporary file could not be written or read back."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Temporary file error for {path}: {reason}")
        self.path = path
        self.reason = reason


class FormatterSpawnError(FormatterBridgeError):
    """The formatter process could not be started."""

    def __init__(self, command: list[str], reason: str) -> None:
        shown = " ".join(command) if command else "<no formatter configured>"
        super().__init__(f"Could not start formatter {shown}: {reason}")
        self.command = command
        self.reason = reason


class FormattingFailed(FormatterBridgeError):
    """The formatter exited with a non-zero code."""

    def __init__(self, exit_code: int, stderr: str = "") -> None:
        message = f"Formatter exited with code {exit_code}"
        if stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class FormatterTimeout(FormatterBridgeError):
    """The formatter did not finish within the configured timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Formatter did not finish within {timeout:g}s")
        self.timeout = timeout
