# rest2sftp/core/errors.py - Error taxonomy for remote operations

import socket
from enum import Enum

from paramiko.ssh_exception import AuthenticationException, NoValidConnectionsError, SSHException

from ..models.files import ErrorEnvelope

# Code reported for every failure when the legacy (flat) error envelope is enabled
GENERIC_FAILURE_CODE = 1


class ErrorKind(str, Enum):
    """Failure classes, each carrying its wire code and HTTP status."""

    SESSION = "session_error"
    PATH_NOT_FOUND = "path_not_found"
    PERMISSION_DENIED = "permission_denied"
    ALREADY_EXISTS = "already_exists"
    IO = "io_error"
    PROTOCOL = "protocol_error"
    MALFORMED_REQUEST = "malformed_request"

    @property
    def code(self) -> int:
        return _CODES[self]

    @property
    def http_status(self) -> int:
        return _HTTP_STATUSES[self]


_CODES = {
    ErrorKind.SESSION: 2,
    ErrorKind.PATH_NOT_FOUND: 3,
    ErrorKind.PERMISSION_DENIED: 4,
    ErrorKind.ALREADY_EXISTS: 5,
    ErrorKind.IO: 6,
    ErrorKind.PROTOCOL: 7,
    ErrorKind.MALFORMED_REQUEST: 8,
}

_HTTP_STATUSES = {
    ErrorKind.SESSION: 502,
    ErrorKind.PATH_NOT_FOUND: 404,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.ALREADY_EXISTS: 409,
    ErrorKind.IO: 500,
    ErrorKind.PROTOCOL: 500,
    ErrorKind.MALFORMED_REQUEST: 400,
}


class OperationError(Exception):
    """A failed gateway operation, tagged with its ErrorKind.

    The message follows the "<underlying error text>, <stage description>" form
    once a stage has been attached with `wrap`.
    """

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return self.message

    def to_envelope(self, legacy: bool = False) -> ErrorEnvelope:
        """Builds the JSON error envelope for this error."""
        if legacy:
            return ErrorEnvelope(status_code=GENERIC_FAILURE_CODE, message=self.message)
        return ErrorEnvelope(status_code=self.kind.code, message=self.message, kind=self.kind.value)

    def http_status(self, legacy: bool = False) -> int:
        return 400 if legacy else self.kind.http_status


def describe(exc: BaseException) -> str:
    """Returns the human-readable text of an underlying failure."""
    if isinstance(exc, OperationError):
        return exc.message
    if isinstance(exc, OSError) and exc.strerror:
        return exc.strerror
    text = str(exc)
    return text if text else type(exc).__name__


def classify(exc: BaseException) -> ErrorKind:
    """
    Maps an exception raised by paramiko or the OS to an ErrorKind.

    paramiko reports SFTP status codes as errno-bearing IOErrors, which Python
    turns into the matching OSError subclasses, so the mapping is done on types.
    """
    if isinstance(exc, OperationError):
        return exc.kind
    if isinstance(exc, (AuthenticationException, NoValidConnectionsError)):
        return ErrorKind.SESSION
    if isinstance(exc, (SSHException, EOFError)):
        return ErrorKind.PROTOCOL
    if isinstance(exc, FileNotFoundError):
        return ErrorKind.PATH_NOT_FOUND
    if isinstance(exc, PermissionError):
        return ErrorKind.PERMISSION_DENIED
    if isinstance(exc, FileExistsError):
        return ErrorKind.ALREADY_EXISTS
    if isinstance(exc, (ConnectionError, socket.timeout, socket.gaierror)):
        return ErrorKind.SESSION
    return ErrorKind.IO


def wrap(exc: BaseException, stage: str, kind: ErrorKind | None = None) -> OperationError:
    """
    Attaches a stage description to an underlying failure.

    Args:
        exc: The underlying exception (an OperationError keeps its kind).
        stage: Description of the step that failed, e.g. "Delete file error".
        kind: Overrides the classified kind when given.

    Returns:
        A new OperationError with message "<underlying text>, <stage>".
    """
    return OperationError(kind or classify(exc), f"{describe(exc)}, {stage}")
