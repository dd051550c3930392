"""Channel transport collaborators.

The core only needs two things from a chat connection: a way to publish a
line of text to a channel and a continuous stream of incoming messages.
:class:`ChannelTransport` captures that contract.

Implementations:
    QueueTransport: In-memory transport backed by an ``asyncio.Queue``.
        Used by tests and by applications that already own a connection.
    TwitchChatTransport: Minimal asyncio IRC client for Twitch chat
        (TLS, tags capability, PING/PONG).  It does not reconnect; losing
        the connection closes the message stream.

All streams are cancel-safe: cancelling a pending ``__anext__`` never drops
a message, so the same stream can be raced against a timeout repeatedly.
"""

import asyncio
import logging
import ssl
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol, Tuple

from core.errors import TransportError

logger = logging.getLogger(__name__)

AUTH_FAILED_NOTICE = "Login authentication failed"
"""Literal notice text the chat server sends when credentials are rejected."""


class MessageKind(Enum):
    """Discriminant between ordinary chat messages and server notices."""

    MESSAGE = "message"
    NOTICE = "notice"


@dataclass(frozen=True)
class IncomingMessage:
    """One message received from the channel.

    Attributes:
        author_id: Stable user id of the author (empty for notices).
        body: Free-text message body.
        kind: :class:`MessageKind` of the message.
        author_name: Login name of the author, when known.
        channel: Channel the message was received in, when known.
    """

    author_id: str
    body: str
    kind: MessageKind = MessageKind.MESSAGE
    author_name: str = ""
    channel: str = ""

    @classmethod
    def notice(cls, body: str, channel: str = "") -> "IncomingMessage":
        return cls(author_id="", body=body, kind=MessageKind.NOTICE, channel=channel)


_CLOSED = object()


class MessageStream:
    """Async iterator over a queue of :class:`IncomingMessage`.

    Iteration ends once :meth:`close` has been called and the queued
    messages are drained.
    """

    def __init__(self, queue: Optional["asyncio.Queue[object]"] = None) -> None:
        self._queue: "asyncio.Queue[object]" = queue or asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, message: IncomingMessage) -> None:
        """Enqueue a message (ignored once the stream is closed)."""
        if self._closed:
            return
        self._queue.put_nowait(message)

    def close(self) -> None:
        """Mark the end of the stream."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def drain(self) -> List[IncomingMessage]:
        """Remove and return every message queued so far, without waiting.

        The end-of-stream marker stays queued.
        """
        drained: List[IncomingMessage] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return drained
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                return drained
            drained.append(item)  # type: ignore[arg-type]

    def __aiter__(self) -> "MessageStream":
        return self

    async def __anext__(self) -> IncomingMessage:
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any later reader.
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item  # type: ignore[return-value]


class ChannelTransport(Protocol):
    """What the core consumes from a chat connection."""

    async def send(self, channel: str, text: str) -> None:
        """Publish *text* to *channel*."""
        ...

    def messages(self) -> MessageStream:
        """Return the (single, shared) incoming message stream."""
        ...


class QueueTransport:
    """In-memory transport.

    Outgoing lines are recorded in :attr:`sent`; incoming messages are
    injected with :meth:`feed`.  An optional *responder* callback may
    produce replies for each sent line.
    """

    def __init__(self, responder=None) -> None:
        self.sent: List[Tuple[str, str]] = []
        self.responder = responder
        self._stream = MessageStream()

    async def send(self, channel: str, text: str) -> None:
        if self._stream.closed:
            raise TransportError("Transport is closed")
        self.sent.append((channel, text))
        if self.responder is not None:
            for reply in self.responder(channel, text) or ():
                self._stream.feed(reply)

    def messages(self) -> MessageStream:
        return self._stream

    def feed(self, *messages: IncomingMessage) -> None:
        for message in messages:
            self._stream.feed(message)

    def close(self) -> None:
        self._stream.close()


@dataclass
class IrcLine:
    """A parsed IRC line (IRCv3 tags included)."""

    command: str
    params: List[str] = field(default_factory=list)
    tags: Dict[str, str] = field(default_factory=dict)
    prefix: Optional[str] = None

    @property
    def nick(self) -> str:
        if not self.prefix:
            return ""
        return self.prefix.split("!", 1)[0]

    @property
    def trailing(self) -> str:
        return self.params[-1] if self.params else ""


def parse_irc_line(raw: str) -> IrcLine:
    """Parse one raw IRC line into an :class:`IrcLine`."""
    line = raw.rstrip("\r\n")
    tags: Dict[str, str] = {}
    prefix = None

    if line.startswith("@"):
        tag_part, _, line = line[1:].partition(" ")
        for item in tag_part.split(";"):
            key, _, value = item.partition("=")
            tags[key] = value
    if line.startswith(":"):
        prefix, _, line = line[1:].partition(" ")

    params: List[str] = []
    while line:
        if line.startswith(":"):
            params.append(line[1:])
            break
        param, _, line = line.partition(" ")
        if param:
            params.append(param)

    command = params.pop(0).upper() if params else ""
    return IrcLine(command=command, params=params, tags=tags, prefix=prefix)


def to_incoming_message(line: IrcLine) -> Optional[IncomingMessage]:
    """Convert a PRIVMSG/NOTICE line; anything else yields ``None``."""
    if line.command == "PRIVMSG" and len(line.params) >= 2:
        return IncomingMessage(
            author_id=line.tags.get("user-id", ""),
            author_name=line.nick,
            body=line.trailing,
            kind=MessageKind.MESSAGE,
            channel=line.params[0].lstrip("#"),
        )
    if line.command == "NOTICE" and line.params:
        channel = line.params[0].lstrip("#") if len(line.params) >= 2 else ""
        return IncomingMessage.notice(line.trailing, channel=channel)
    return None


class TwitchChatTransport:
    """Minimal Twitch chat client over asyncio streams.

    Args:
        username: Login name of the caller.
        token: OAuth token (without the ``oauth:`` prefix).
        channel: Channel to join (without ``#``).
        host: Chat server host name.
        port: Chat server TLS port.
    """

    def __init__(
        self,
        username: str,
        token: str,
        channel: str,
        host: str = "irc.chat.twitch.tv",
        port: int = 6697,
    ) -> None:
        self.username = username.lower()
        self._token = token
        self.channel = channel.lower().lstrip("#")
        self.host = host
        self.port = port
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._stream = MessageStream()

    async def connect(self) -> None:
        """Open the connection, authenticate and join the channel."""
        logger.info("Connecting to %s:%d as %s", self.host, self.port, self.username)
        try:
            self._reader, self._writer = await asyncio.open_connection(
                self.host, self.port, ssl=ssl.create_default_context(),
            )
        except OSError as e:
            raise TransportError(f"Could not connect to chat server: {e}") from e

        await self._write("CAP REQ :twitch.tv/tags twitch.tv/commands")
        await self._write(f"PASS oauth:{self._token}")
        await self._write(f"NICK {self.username}")
        await self._write(f"JOIN #{self.channel}")
        self._reader_task = asyncio.create_task(self._read_loop())
        logger.info("Joined '#%s'", self.channel)

    async def send(self, channel: str, text: str) -> None:
        await self._write(f"PRIVMSG #{channel.lower().lstrip('#')} :{text}")

    def messages(self) -> MessageStream:
        return self._stream

    async def close(self) -> None:
        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        if self._writer:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (OSError, ssl.SSLError):
                pass
        self._stream.close()

    async def _write(self, line: str) -> None:
        if self._writer is None or self._writer.is_closing():
            raise TransportError("Not connected to the chat server")
        try:
            self._writer.write(f"{line}\r\n".encode("utf-8"))
            await self._writer.drain()
        except (OSError, ssl.SSLError) as e:
            raise TransportError(f"Could not send message to chat: {e}") from e

    async def _read_loop(self) -> None:
        if self._reader is None:
            raise TransportError("Not connected to the chat server")
        try:
            while True:
                raw = await self._reader.readline()
                if not raw:
                    logger.warning("Chat server closed the connection")
                    break
                line = parse_irc_line(raw.decode("utf-8", errors="replace"))
                if line.command == "PING":
                    await self._write(f"PONG :{line.trailing}")
                    continue
                message = to_incoming_message(line)
                if message is not None:
                    self._stream.feed(message)
        except (OSError, ssl.SSLError, TransportError) as e:
            logger.error("Chat connection lost: %s", e)
        finally:
            self._stream.close()
