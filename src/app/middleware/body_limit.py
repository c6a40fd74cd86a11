"""
ASGI middleware capping the size of request bodies.

The declared ``Content-Length`` is checked up front; bodies without one
(chunked transfer) are counted as they are received, and reading stops as
soon as the running total passes the limit.
"""

import logging

from fastapi import HTTPException
from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from src.app.schemas.upload import ErrorResponse

logger = logging.getLogger(__name__)


class BodyTooLarge(HTTPException):
    """Raised from ``receive`` once a body grows past the limit."""

    def __init__(self, max_body_size: int) -> None:
        super().__init__(
            status_code=413,
            detail=f"Request body too large. Maximum size is {max_body_size} bytes.",
        )


class BodySizeLimitMiddleware:
    """Reject request bodies larger than ``max_body_size`` bytes with 413."""

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        content_length = Headers(scope=scope).get("content-length", "")
        if content_length.isdigit() and int(content_length) > self.max_body_size:
            logger.warning("Rejected %s body of %s bytes", scope["path"], content_length)
            await self._reject(scope, receive, send)
            return

        received = 0
        response_started = False

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_size:
                    logger.warning("Rejected %s streamed body past %d bytes", scope["path"], received)
                    raise BodyTooLarge(self.max_body_size)
            return message

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracking_send)
        except BodyTooLarge:
            # normally turned into a response by the app's exception handler
            if response_started:
                raise
            await self._reject(scope, receive, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = JSONResponse(
            status_code=413,
            content=ErrorResponse(error=BodyTooLarge(self.max_body_size).detail).model_dump(),
        )
        await response(scope, receive, send)
