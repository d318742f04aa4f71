"""
Streaming passthrough from the NIM backend to the caller.

The backend's event stream is never parsed: bytes are relayed in the order
and chunking they arrive in. The relay is pull-based, so the backend is
only read when the server is ready to send the next chunk to the caller.
"""

import asyncio
import logging
from collections.abc import AsyncIterator

import httpx

from .errors import BackendTransportError, read_backend_error
from .midstream_abort import MidStreamAbort

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def open_backend_stream(client: httpx.AsyncClient, body: dict) -> httpx.Response:
    """Send the completion request in streaming mode and check its status.

    The status is checked before anything is relayed so that a backend error
    still reaches the caller as a regular error response.

    Raises:
        BackendHTTPError: backend answered with a non-2xx status
        BackendTransportError: backend could not be reached
    """
    request = client.build_request("POST", "/chat/completions", json=body)
    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as e:
        raise BackendTransportError() from e

    if not response.is_error:
        return response

    try:
        error = await read_backend_error(response)
    except httpx.HTTPError as e:
        raise BackendTransportError() from e
    finally:
        await response.aclose()
    raise error


async def relay_stream(response: httpx.Response) -> AsyncIterator[bytes]:
    """Yield the backend body chunk by chunk, unmodified.

    The backend response is closed on every exit path: end of stream,
    backend failure, or the caller going away (generator closed/cancelled).
    """
    chunks = 0
    try:
        async for chunk in response.aiter_bytes():
            chunks += 1
            yield chunk
    except httpx.HTTPError as e:
        raise MidStreamAbort(
            f"backend stream failed after {chunks} chunks: {type(e).__name__}"
        ) from e
    finally:
        # Shielded so the backend connection is released even when the relay
        # is being cancelled by a caller disconnect.
        await asyncio.shield(response.aclose())
        logger.debug(f"Stream relay finished after {chunks} chunks")
