"""Error codes and exceptions for the game client."""
from enum import Enum

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from stepclimb.config import settings


class ErrorCode(str, Enum):
    """Error codes surfaced to callers."""

    INVALID_REQUEST = "INVALID_REQUEST"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    TRANSPORT_FAILED = "TRANSPORT_FAILED"
    NOT_YOUR_GAME = "NOT_YOUR_GAME"
    CONTRACT_INSOLVENT = "CONTRACT_INSOLVENT"
    PROTOCOL_MISMATCH = "PROTOCOL_MISMATCH"
    ACTION_IN_PROGRESS = "ACTION_IN_PROGRESS"
    INVALID_STATE = "INVALID_STATE"
    LEDGER_REJECTED = "LEDGER_REJECTED"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.VALIDATION_FAILED: 400,
    ErrorCode.TRANSPORT_FAILED: 502,
    ErrorCode.NOT_YOUR_GAME: 403,
    ErrorCode.CONTRACT_INSOLVENT: 503,
    ErrorCode.PROTOCOL_MISMATCH: 502,
    ErrorCode.ACTION_IN_PROGRESS: 409,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.LEDGER_REJECTED: 422,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INTERNAL_ERROR: 500,
}

# Recoverable means the same session can continue after the user acts.
ERROR_RECOVERABLE: dict[ErrorCode, bool] = {
    ErrorCode.INVALID_REQUEST: False,
    ErrorCode.VALIDATION_FAILED: False,
    ErrorCode.TRANSPORT_FAILED: True,
    ErrorCode.NOT_YOUR_GAME: False,
    ErrorCode.CONTRACT_INSOLVENT: True,
    ErrorCode.PROTOCOL_MISMATCH: False,
    ErrorCode.ACTION_IN_PROGRESS: True,
    ErrorCode.INVALID_STATE: False,
    ErrorCode.LEDGER_REJECTED: False,
    ErrorCode.NOT_FOUND: False,
    ErrorCode.INTERNAL_ERROR: True,
}


class ErrorBody(BaseModel):
    """Error body shape."""

    code: str
    message: str
    recoverable: bool
    possiblyBroadcast: bool | None = None


class ErrorResponse(BaseModel):
    """Full error response."""

    protocolVersion: str = settings.protocol_version
    error: ErrorBody


class GameError(Exception):
    """Base game error that maps to a protocol error response."""

    def __init__(self, code: ErrorCode, message: str | None = None):
        self.code = code
        self.message = message or f"Error: {code.value}"
        self.status_code = ERROR_HTTP_STATUS[code]
        self.recoverable = ERROR_RECOVERABLE[code]
        super().__init__(self.message)

    def _body(self) -> ErrorBody:
        return ErrorBody(
            code=self.code.value,
            message=self.message,
            recoverable=self.recoverable,
        )

    def to_response(self) -> JSONResponse:
        """Convert to JSONResponse."""
        return JSONResponse(
            status_code=self.status_code,
            content=ErrorResponse(error=self._body()).model_dump(exclude_none=True),
        )


class ValidationError(GameError):
    """Local precondition failed; the request never reached the ledger."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.VALIDATION_FAILED, message)


class TransportError(GameError):
    """Submission or confirmation transport failed.

    possibly_broadcast tells the caller whether a retry could double-submit.
    """

    def __init__(self, message: str, possibly_broadcast: bool):
        super().__init__(ErrorCode.TRANSPORT_FAILED, message)
        self.possibly_broadcast = possibly_broadcast

    def _body(self) -> ErrorBody:
        body = super()._body()
        body.possiblyBroadcast = self.possibly_broadcast
        return body


class AuthorizationError(GameError):
    """Ledger rejected the call because the caller does not own the session."""

    def __init__(self, reason: str):
        super().__init__(ErrorCode.NOT_YOUR_GAME, reason)
        self.reason = reason


class InsolvencyError(GameError):
    """Ledger reserve cannot cover the payout. The session stays playable."""

    def __init__(self, reason: str):
        super().__init__(
            ErrorCode.CONTRACT_INSOLVENT,
            f"{reason}: the game reserve cannot cover this payout right now. "
            "Wait and try again, or play a smaller session.",
        )
        self.reason = reason


class ProtocolMismatchError(GameError):
    """Confirmation succeeded but the expected event was not in the receipt."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.PROTOCOL_MISMATCH, message)


class LedgerRejectedError(GameError):
    """Ledger reverted for a reason with no dedicated error class."""

    def __init__(self, reason: str):
        super().__init__(ErrorCode.LEDGER_REJECTED, reason)
        self.reason = reason


class SessionStateError(GameError):
    """Action refused locally by the session state machine."""
