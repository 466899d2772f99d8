"""Middleware for player identification and error handling."""
import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from stepclimb.errors import ErrorCode, GameError


logger = logging.getLogger(__name__)


class PlayerAddressMiddleware(BaseHTTPMiddleware):
    """Require the X-Player-Address header on game endpoints."""

    PROTECTED_PREFIX = "/game"

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(self.PROTECTED_PREFIX):
            address = request.headers.get("X-Player-Address", "").strip()
            if not address:
                error = GameError(
                    ErrorCode.INVALID_REQUEST,
                    "Missing required header: X-Player-Address",
                )
                return error.to_response()
            request.state.player_address = address

        return await call_next(request)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Convert GameError exceptions to protocol error responses."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except GameError as e:
            return e.to_response()
        except Exception as e:
            logger.exception("Unhandled error on %s", request.url.path)
            error = GameError(ErrorCode.INTERNAL_ERROR, str(e))
            return error.to_response()
