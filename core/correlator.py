"""Reply correlation.

Filters the raw incoming message stream down to replies that were written
by the expected counterpart bot *and* are addressed to us.  Everything else
(other users, replies to other callers, unrelated server traffic) is
skipped silently.

The one exception is the authentication-failure notice: it aborts
correlation immediately with :class:`~core.errors.AuthenticationError`.
"""

import logging
from typing import AsyncIterator, Optional, Pattern, Protocol

from core.errors import AuthenticationError, StreamExhaustedError
from core.patterns import USERNAME_FIELD
from core.transport import AUTH_FAILED_NOTICE, IncomingMessage, MessageKind

logger = logging.getLogger(__name__)


class TargetDescriptor(Protocol):
    """What correlation needs to know about one bot instance."""

    def channel(self) -> str:
        """Channel the counterpart bot sits in."""
        ...

    def expected_author_id(self) -> str:
        """User id of the counterpart bot."""
        ...

    def caller_identity(self) -> str:
        """Our own login name, as the counterpart addresses us."""
        ...

    def addressed_to_me_pattern(self) -> Pattern[str]:
        """Broad pattern capturing the addressee as ``username``."""
        ...


class Correlator:
    """Match incoming messages to the caller of a :class:`TargetDescriptor`."""

    def __init__(self, target: TargetDescriptor) -> None:
        self.target = target

    def accepts(self, message: IncomingMessage) -> Optional[str]:
        """Return the body of *message* if it is a correlated reply.

        Raises:
            AuthenticationError: On the authentication-failure notice.
        """
        if message.kind is MessageKind.NOTICE:
            if message.body == AUTH_FAILED_NOTICE:
                raise AuthenticationError()
            return None

        if message.author_id != self.target.expected_author_id():
            logger.debug("Skipping message from %s", message.author_name or message.author_id)
            return None

        match = self.target.addressed_to_me_pattern().search(message.body)
        if match is None:
            return None

        addressee = match.group(USERNAME_FIELD)
        if addressee is None or addressee.lower() != self.target.caller_identity().lower():
            logger.debug("Skipping reply addressed to %s", addressee)
            return None

        return message.body

    async def replies(self, stream: AsyncIterator[IncomingMessage]) -> AsyncIterator[str]:
        """Lazily yield correlated reply bodies until *stream* closes."""
        async for message in stream:
            body = self.accepts(message)
            if body is not None:
                yield body

    async def next_reply(self, stream: AsyncIterator[IncomingMessage]) -> str:
        """Wait for the next correlated reply.

        Raises:
            AuthenticationError: On the authentication-failure notice.
            StreamExhaustedError: If *stream* closes first.
        """
        async for message in stream:
            body = self.accepts(message)
            if body is not None:
                return body
        raise StreamExhaustedError()
