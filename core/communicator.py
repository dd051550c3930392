"""Request/reply exchange with a counterpart bot.

One :meth:`Communicator.communicate` call sends a command, waits for a
correlated reply and classifies it.  Only reply timeouts are retried, with
an exponential back-off of ``2 ** (attempt + 2)`` seconds; every other
failure ends the exchange with a distinct :class:`~core.errors.CommunicationError`.

State machine::

    IDLE -> SENDING -> AWAITING_REPLY -> MATCHED_SUCCESS       -> DELIVERED
                                      -> MATCHED_FAILURE_SHAPE -> DELIVERED
                                      -> TIMED_OUT -> SENDING (next attempt) | GAVE_UP
                                      -> UNPARSEABLE | STREAM_EXHAUSTED | AUTH_FAILED -> GAVE_UP

Each send toggles an invisible anti-duplication marker, starting marked on
the first send of every command, so two identical consecutive sends are
not swallowed by the chat server's duplicate message filter.  Messages queued before a command
is sent are discarded, so a late reply to an earlier command is never
mistaken for the answer to the current one.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from core.classifier import (
    Outcome,
    OnCooldown,
    ResponseClassifier,
    Success,
    Unparseable,
)
from core.correlator import Correlator, TargetDescriptor
from core.errors import (
    AuthenticationError,
    ClaimBotError,
    CommunicationFailedError,
    ReplyTimeoutError,
    StreamExhaustedError,
    TransportError,
    UnparseableReplyError,
)
from core.patterns import PatternRegistry
from core.transport import ChannelTransport, MessageStream
from core.utils import format_duration

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
REPLY_TIMEOUT_SECONDS = 5.0
ANTI_DUPLICATION_MARKER = "\U000E0000"
"""Invisible code point (LANGUAGE TAG) appended to every other send."""


def backoff_delay(attempt: int) -> float:
    """Back-off in seconds after a timeout on 0-based *attempt*."""
    return float(2 ** (attempt + 2))


def backoff_table(max_retries: int = MAX_RETRIES) -> Tuple[float, ...]:
    """Back-off for every attempt of a budget of *max_retries* retries."""
    return tuple(backoff_delay(attempt) for attempt in range(max_retries + 1))


class CommunicatorState(Enum):
    """States of a single :meth:`Communicator.communicate` call."""

    IDLE = "idle"
    SENDING = "sending"
    AWAITING_REPLY = "awaiting_reply"
    MATCHED_SUCCESS = "matched_success"
    MATCHED_FAILURE_SHAPE = "matched_failure_shape"
    TIMED_OUT = "timed_out"
    UNPARSEABLE = "unparseable"
    STREAM_EXHAUSTED = "stream_exhausted"
    AUTH_FAILED = "auth_failed"
    DELIVERED = "delivered"
    GAVE_UP = "gave_up"


@dataclass(frozen=True)
class Command:
    """One send of a command.

    Attributes:
        text: Command text as typed by a user (e.g. ``"!cookie"``).
        marked: Whether the anti-duplication marker is appended.
    """

    text: str
    marked: bool = False

    @property
    def payload(self) -> str:
        """Text actually published to the channel."""
        return f"{self.text}{ANTI_DUPLICATION_MARKER}" if self.marked else self.text


class AntiDuplicationMarker:
    """Alternating marker: the first send is marked, the second is not, ..."""

    def __init__(self, first_marked: bool = True) -> None:
        self._next = first_marked

    def stamp(self, text: str) -> Command:
        """Build the :class:`Command` for the next send and flip the marker."""
        command = Command(text=text, marked=self._next)
        self._next = not self._next
        return command


@dataclass
class RetryState:
    """Bookkeeping for one :meth:`Communicator.communicate` call.

    Attributes:
        max_retries: Retry budget (attempts beyond the first send).
        attempt: 0-based attempt counter.
        backoff: Back-off computed for the current attempt, in seconds.
        terminal: Set once no further attempt will be made.
    """

    max_retries: int = MAX_RETRIES
    attempt: int = 0
    backoff: float = 0.0
    terminal: bool = False

    @property
    def sends(self) -> int:
        return self.attempt + 1

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_retries

    def on_timeout(self) -> float:
        """Record a timeout; return the back-off to sleep (0 if giving up)."""
        if self.exhausted:
            self.terminal = True
            self.backoff = 0.0
        else:
            self.backoff = backoff_delay(self.attempt)
        return self.backoff

    def advance(self) -> None:
        self.attempt += 1


class Communicator:
    """Send commands to the channel and classify the correlated replies.

    Args:
        target: The bot instance's :class:`TargetDescriptor`.
        transport: Channel transport used for sending and receiving.
        registry: Reply grammar of the counterpart bot.
        reply_timeout: Wait budget per attempt, in seconds.
        max_retries: Number of retries after the first send.
        sleep: Coroutine used for back-off sleeps.
    """

    def __init__(
        self,
        target: TargetDescriptor,
        transport: ChannelTransport,
        registry: PatternRegistry,
        reply_timeout: float = REPLY_TIMEOUT_SECONDS,
        max_retries: int = MAX_RETRIES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.target = target
        self.transport = transport
        self.registry = registry
        self.correlator = Correlator(target)
        self.reply_timeout = reply_timeout
        self.max_retries = max_retries
        self.marker = AntiDuplicationMarker()
        self.state = CommunicatorState.IDLE
        self.transitions: List[CommunicatorState] = []
        self.last_retry_state: Optional[RetryState] = None
        self._sleep = sleep
        self._stream: Optional[MessageStream] = None
        self._classifiers: Dict[Optional[str], ResponseClassifier] = {}

    @property
    def stream(self) -> MessageStream:
        if self._stream is None:
            self._stream = self.transport.messages()
        return self._stream

    def classifier(self, group: Optional[str] = None) -> ResponseClassifier:
        if group not in self._classifiers:
            self._classifiers[group] = ResponseClassifier(self.registry, group)
        return self._classifiers[group]

    async def communicate(self, command_text: str, group: Optional[str] = None) -> Outcome:
        """Send *command_text* and return the classified reply.

        Args:
            command_text: Command to publish.
            group: Rule group used to classify the reply.

        Raises:
            CommunicationFailedError: Every attempt timed out.
            UnparseableReplyError: The correlated reply matched no rule.
            StreamExhaustedError: The message stream closed.
            AuthenticationError: The chat server rejected our credentials.
            TransportError: Publishing the command failed.
            RuleFieldError: A rule matched without a required field.
        """
        classifier = self.classifier(group)
        retry = RetryState(max_retries=self.max_retries)
        self.last_retry_state = retry
        self.marker = AntiDuplicationMarker()
        self.transitions = []
        self._transition(CommunicatorState.IDLE)
        self._discard_stale(command_text)

        while True:
            if retry.attempt > 0:
                logger.info("Retrying communication: Retry %d", retry.attempt)

            await self._send(command_text)

            try:
                body = await self._await_reply(command_text, retry)
            except ReplyTimeoutError as e:
                self._transition(CommunicatorState.TIMED_OUT)
                logger.info("Got no response: %s", e)
                delay = retry.on_timeout()
                if retry.terminal:
                    self._transition(CommunicatorState.GAVE_UP)
                    raise CommunicationFailedError(
                        attempts=retry.max_retries, sends=retry.sends, command=command_text,
                    ) from e
                logger.info("Sleeping for %s", format_duration(delay))
                await self._sleep(delay)
                retry.advance()
                continue

            return self._deliver(classifier, body, command_text, retry)

    def _transition(self, state: CommunicatorState) -> None:
        self.state = state
        self.transitions.append(state)

    def _discard_stale(self, command_text: str) -> None:
        """Drop everything received before this command was sent.

        Raises:
            AuthenticationError: If the dropped messages hold the
                authentication-failure notice.
        """
        stale = self.stream.drain()
        try:
            for message in stale:
                if self.correlator.accepts(message) is not None:
                    logger.debug("Discarding stale reply: %s", message.body)
        except AuthenticationError:
            self._transition(CommunicatorState.AUTH_FAILED)
            self._transition(CommunicatorState.GAVE_UP)
            raise AuthenticationError(command_text) from None
        if stale:
            logger.debug("Discarded %d queued message(s) before %r", len(stale), command_text)

    async def _send(self, command_text: str) -> None:
        command = self.marker.stamp(command_text)
        self._transition(CommunicatorState.SENDING)
        logger.debug("Sending %r to #%s", command.text, self.target.channel())
        try:
            await self.transport.send(self.target.channel(), command.payload)
        except TransportError:
            self._transition(CommunicatorState.GAVE_UP)
            raise
        except (OSError, ConnectionError) as e:
            self._transition(CommunicatorState.GAVE_UP)
            raise TransportError(f"Could not send message to chat: {e}", command_text) from e

    async def _await_reply(self, command_text: str, retry: RetryState) -> str:
        self._transition(CommunicatorState.AWAITING_REPLY)
        try:
            return await asyncio.wait_for(
                self.correlator.next_reply(self.stream), timeout=self.reply_timeout,
            )
        except asyncio.TimeoutError:
            raise ReplyTimeoutError(self.reply_timeout, retry.attempt, command_text) from None
        except AuthenticationError:
            self._transition(CommunicatorState.AUTH_FAILED)
            retry.terminal = True
            self._transition(CommunicatorState.GAVE_UP)
            raise AuthenticationError(command_text) from None
        except StreamExhaustedError:
            self._transition(CommunicatorState.STREAM_EXHAUSTED)
            retry.terminal = True
            self._transition(CommunicatorState.GAVE_UP)
            raise StreamExhaustedError(command_text) from None

    def _deliver(
        self,
        classifier: ResponseClassifier,
        body: str,
        command_text: str,
        retry: RetryState,
    ) -> Outcome:
        retry.terminal = True
        try:
            result = classifier.classify(body)
        except ClaimBotError:
            self._transition(CommunicatorState.GAVE_UP)
            raise

        if isinstance(result, Unparseable):
            self._transition(CommunicatorState.UNPARSEABLE)
            self._transition(CommunicatorState.GAVE_UP)
            raise UnparseableReplyError(body, group=result.group, command=command_text)

        if isinstance(result, Success):
            self._transition(CommunicatorState.MATCHED_SUCCESS)
        elif isinstance(result, OnCooldown):
            self._transition(CommunicatorState.MATCHED_FAILURE_SHAPE)
        self._transition(CommunicatorState.DELIVERED)
        return result
