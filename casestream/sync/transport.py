"""
Transport Channel — the long-lived server push connection.

A channel yields ChannelMessages in arrival order:
  OPEN, then SNAPSHOT once, then DELTA*. The iterator ends when the server
  closes the stream and raises TransportError when the connection fails.

The SSE implementation reads `GET {events_url}` with httpx and decodes the
text/event-stream wire format itself.
"""

import logging
from enum import Enum
from typing import AsyncGenerator, List, Optional, Protocol

import httpx
from pydantic import BaseModel

from casestream.errors import TransportError
from casestream.models.engine import EngineConfig

logger = logging.getLogger(__name__)


class MessageKind(str, Enum):
    OPEN = "open"
    SNAPSHOT = "snapshot"
    DELTA = "delta"


class ChannelMessage(BaseModel):
    kind: MessageKind
    data: str = ""                          # Raw JSON text for SNAPSHOT / DELTA


class SSEEvent(BaseModel):
    event: str = "message"
    data: str = ""
    id: Optional[str] = None


class SSEDecoder:
    """
    Incremental decoder for the text/event-stream format.

    Feed it lines (without trailing newlines); it returns an event each time
    a blank line completes one. Comment lines (":" prefix) are skipped and
    multiple data lines are joined with "\\n".
    """

    def __init__(self):
        self._event: Optional[str] = None
        self._data: List[str] = []
        self._last_id: Optional[str] = None

    def decode(self, line: str) -> Optional[SSEEvent]:
        line = line.rstrip("\r")

        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            self._last_id = value
        # "retry" and unknown fields are ignored

        return None

    def _dispatch(self) -> Optional[SSEEvent]:
        if not self._data and self._event is None:
            return None
        event = SSEEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._last_id,
        )
        self._event = None
        self._data = []
        return event


class TransportChannel(Protocol):
    """Protocol for one push connection. Implementations must be single-use."""

    def messages(self) -> AsyncGenerator[ChannelMessage, None]: ...

    async def close(self) -> None: ...


class SSEChannel:
    """Server-sent events channel over an httpx AsyncClient."""

    def __init__(
        self,
        config: EngineConfig,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._closed = False

    async def messages(self) -> AsyncGenerator[ChannelMessage, None]:
        """
        Stream messages until the server closes the connection.

        Raises TransportError when the connection cannot be opened or breaks.
        """
        client = self._client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.request_timeout_seconds, read=None)
        )
        self._client = client
        decoder = SSEDecoder()

        try:
            async with client.stream(
                "GET",
                self.config.events_url,
                headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            ) as response:
                if not response.is_success:
                    raise TransportError(
                        f"Event stream returned {response.status_code} "
                        f"{response.reason_phrase}"
                    )

                yield ChannelMessage(kind=MessageKind.OPEN)

                async for line in response.aiter_lines():
                    if self._closed:
                        return
                    event = decoder.decode(line)
                    if event is None:
                        continue
                    if event.event == MessageKind.SNAPSHOT.value:
                        yield ChannelMessage(kind=MessageKind.SNAPSHOT, data=event.data)
                    elif event.event == MessageKind.DELTA.value:
                        yield ChannelMessage(kind=MessageKind.DELTA, data=event.data)
                    else:
                        logger.debug("Skipping SSE event of type %r", event.event)

        except httpx.HTTPError as e:
            if not self._closed:
                raise TransportError(str(e) or type(e).__name__) from e
        finally:
            await self._release()

    async def close(self) -> None:
        self._closed = True
        await self._release()

    async def _release(self) -> None:
        if self._owns_client and self._client is not None:
            client, self._client = self._client, None
            await client.aclose()
