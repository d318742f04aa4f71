"""
Mid-stream abort handling.

Once the event-stream headers have been sent there is no way to report an
error to the caller with a status code. When the backend stream fails the
proxy drops the caller connection instead, which is what the caller would
have seen from the backend itself.
"""

import logging

from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)


class MidStreamAbort(Exception):
    """
    Exception raised to abort a streaming response mid-stream.

    Raised from the relay generator when the backend connection fails after
    the first bytes were forwarded. MidStreamAbortMiddleware turns it into
    a one-liner:
        [mid-stream abort] backend stream failed after 2 chunks: ReadError
    """

    pass


class MidStreamAbortMiddleware:
    """
    Handle MidStreamAbort to simulate a real API connection drop.

    The streamed body is sent after ``call_next`` returns, so an http
    middleware never sees the exception. This wraps the whole ASGI call
    instead, logs a one-liner in place of the ASGI traceback, and returns
    with the response unfinished so the server closes the connection.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message):
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except MidStreamAbort as e:
            logger.info(f"[mid-stream abort] {e}")
            if not response_started:
                raise
