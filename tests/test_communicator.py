from unittest.mock import AsyncMock

import pytest

from conftest import LEAVES_COOLDOWN, LEAVES_HELP, LEAVES_SUCCESS
from core.classifier import OnCooldown, Success
from core.communicator import (
    ANTI_DUPLICATION_MARKER,
    AntiDuplicationMarker,
    Command,
    Communicator,
    CommunicatorState,
    RetryState,
    backoff_delay,
    backoff_table,
)
from core.errors import (
    AuthenticationError,
    CommunicationFailedError,
    ErrorType,
    StreamExhaustedError,
    TransportError,
    UnparseableReplyError,
)
from core.transport import IncomingMessage, QueueTransport

FAST = 0.02


def make_communicator(bot, transport, **kwargs):
    kwargs.setdefault("reply_timeout", FAST)
    kwargs.setdefault("sleep", AsyncMock())
    return Communicator(bot, transport, bot.registry, **kwargs)


def reply_on_send(*numbers, replies):
    """Responder answering only the given 1-based send numbers."""
    sends = []

    def responder(channel, text):
        sends.append(text)
        if len(sends) in numbers:
            return replies(len(sends))
        return ()
    return responder


class TestBackoff:
    """Test suite for the retry arithmetic."""

    def test_backoff_grows_exponentially(self):
        assert [backoff_delay(attempt) for attempt in range(4)] == [4.0, 8.0, 16.0, 32.0]

    def test_backoff_table(self):
        assert backoff_table() == (4.0, 8.0, 16.0, 32.0)
        assert backoff_table(1) == (4.0, 8.0)

    def test_retry_state(self):
        retry = RetryState(max_retries=3)
        delays = []
        while True:
            delays.append(retry.on_timeout())
            if retry.terminal:
                break
            retry.advance()
        assert delays == [4.0, 8.0, 16.0, 0.0]
        assert retry.sends == 4


class TestMarker:
    """Test suite for the anti-duplication marker."""

    def test_command_payload(self):
        assert Command("!cookie").payload == "!cookie"
        assert Command("!cookie", marked=True).payload == "!cookie" + ANTI_DUPLICATION_MARKER

    def test_marker_alternates(self):
        marker = AntiDuplicationMarker()
        assert [marker.stamp("x").marked for _ in range(5)] == [True, False, True, False, True]

    def test_marker_is_single_invisible_code_point(self):
        assert ANTI_DUPLICATION_MARKER == "\U000E0000"


class TestCommunicate:
    """Test suite for Communicator.communicate."""

    @pytest.mark.asyncio
    async def test_first_reply_is_delivered(self, leaves_bot, says):
        transport = QueueTransport(lambda channel, text: [says(leaves_bot, LEAVES_SUCCESS)])
        communicator = make_communicator(leaves_bot, transport)

        result = await communicator.communicate("*leaves", "claim")

        assert result == Success(rule="claim_success", username="chronophylos", amount=24, total=34)
        assert transport.sent == [("pajlada", "*leaves" + ANTI_DUPLICATION_MARKER)]
        assert communicator.state is CommunicatorState.DELIVERED
        assert communicator.transitions == [
            CommunicatorState.IDLE,
            CommunicatorState.SENDING,
            CommunicatorState.AWAITING_REPLY,
            CommunicatorState.MATCHED_SUCCESS,
            CommunicatorState.DELIVERED,
        ]

    @pytest.mark.asyncio
    async def test_cooldown_reply_is_delivered(self, leaves_bot, says):
        transport = QueueTransport(lambda channel, text: [says(leaves_bot, LEAVES_COOLDOWN)])
        communicator = make_communicator(leaves_bot, transport)

        result = await communicator.communicate("*leaves", "claim")

        assert isinstance(result, OnCooldown)
        assert CommunicatorState.MATCHED_FAILURE_SHAPE in communicator.transitions

    @pytest.mark.asyncio
    async def test_pure_timeout_gives_up_after_four_sends(self, leaves_bot):
        transport = QueueTransport()
        sleep = AsyncMock()
        communicator = make_communicator(leaves_bot, transport, sleep=sleep)

        with pytest.raises(CommunicationFailedError) as exc_info:
            await communicator.communicate("*leaves", "claim")

        error = exc_info.value
        assert error.attempts == 3
        assert error.sends == 4
        assert error.command == "*leaves"
        assert "Communication failed after 3 attempts" in str(error)
        assert error.error_type is ErrorType.TRANSIENT
        assert len(transport.sent) == 4
        assert [call.args[0] for call in sleep.await_args_list] == [4.0, 8.0, 16.0]
        assert communicator.state is CommunicatorState.GAVE_UP

    @pytest.mark.asyncio
    async def test_marker_alternates_across_retries(self, leaves_bot):
        transport = QueueTransport()
        communicator = make_communicator(leaves_bot, transport)

        with pytest.raises(CommunicationFailedError):
            await communicator.communicate("*leaves", "claim")

        payloads = [text for _, text in transport.sent]
        assert payloads == [
            "*leaves" + ANTI_DUPLICATION_MARKER,
            "*leaves",
            "*leaves" + ANTI_DUPLICATION_MARKER,
            "*leaves",
        ]

    @pytest.mark.asyncio
    async def test_every_command_starts_marked(self, leaves_bot, says):
        transport = QueueTransport(lambda channel, text: [says(leaves_bot, LEAVES_SUCCESS)])
        communicator = make_communicator(leaves_bot, transport)

        await communicator.communicate("*leaves", "claim")
        await communicator.communicate("*leaves", "claim")

        assert [text for _, text in transport.sent] == ["*leaves" + ANTI_DUPLICATION_MARKER] * 2

    @pytest.mark.asyncio
    async def test_marker_restarts_after_a_retried_command(self, leaves_bot, says):
        transport = QueueTransport(
            reply_on_send(1, replies=lambda n: [says(leaves_bot, LEAVES_SUCCESS)])
        )
        communicator = make_communicator(leaves_bot, transport)

        await communicator.communicate("*leaves", "claim")
        with pytest.raises(CommunicationFailedError):
            await communicator.communicate("*leaves", "claim")

        payloads = [text for _, text in transport.sent]
        assert payloads[0].endswith(ANTI_DUPLICATION_MARKER)
        assert payloads[1].endswith(ANTI_DUPLICATION_MARKER)
        assert not payloads[2].endswith(ANTI_DUPLICATION_MARKER)

    @pytest.mark.asyncio
    async def test_reply_on_later_attempt_short_circuits(self, leaves_bot, says):
        transport = QueueTransport(
            reply_on_send(2, replies=lambda n: [says(leaves_bot, LEAVES_SUCCESS)])
        )
        sleep = AsyncMock()
        communicator = make_communicator(leaves_bot, transport, sleep=sleep)

        result = await communicator.communicate("*leaves", "claim")

        assert result.amount == 24
        assert len(transport.sent) == 2
        sleep.assert_awaited_once_with(4.0)
        assert communicator.last_retry_state.attempt == 1

    @pytest.mark.asyncio
    async def test_unparseable_reply_is_terminal(self, leaves_bot, says):
        transport = QueueTransport(lambda channel, text: [says(leaves_bot, LEAVES_HELP)])
        communicator = make_communicator(leaves_bot, transport)

        with pytest.raises(UnparseableReplyError) as exc_info:
            await communicator.communicate("*leaves", "claim")

        assert exc_info.value.reply == LEAVES_HELP
        assert exc_info.value.group == "claim"
        assert exc_info.value.command == "*leaves"
        assert len(transport.sent) == 1
        assert CommunicatorState.UNPARSEABLE in communicator.transitions

    @pytest.mark.asyncio
    async def test_noise_is_skipped(self, leaves_bot, says):
        other = LEAVES_SUCCESS.replace("chronophylos", "someoneelse")
        transport = QueueTransport(lambda channel, text: [
            IncomingMessage(author_id="999", author_name="randomviewer", body=LEAVES_HELP),
            says(leaves_bot, other),
            says(leaves_bot, LEAVES_COOLDOWN),
        ])
        communicator = make_communicator(leaves_bot, transport)

        result = await communicator.communicate("*leaves", "claim")

        assert isinstance(result, OnCooldown)
        assert (result.minutes, result.seconds) == (45, 58)

    @pytest.mark.asyncio
    async def test_stream_exhausted(self, leaves_bot):
        transport = QueueTransport()
        transport.responder = lambda channel, text: transport.close()
        communicator = make_communicator(leaves_bot, transport)

        with pytest.raises(StreamExhaustedError) as exc_info:
            await communicator.communicate("*leaves", "claim")

        assert exc_info.value.command == "*leaves"
        assert exc_info.value.error_type is ErrorType.STREAM_CLOSED
        assert len(transport.sent) == 1
        assert communicator.transitions[-2:] == [
            CommunicatorState.STREAM_EXHAUSTED, CommunicatorState.GAVE_UP,
        ]

    @pytest.mark.asyncio
    async def test_auth_failure_is_terminal(self, leaves_bot, says):
        transport = QueueTransport(lambda channel, text: [
            IncomingMessage.notice("Login authentication failed"),
            says(leaves_bot, LEAVES_SUCCESS),
        ])
        communicator = make_communicator(leaves_bot, transport)

        with pytest.raises(AuthenticationError) as exc_info:
            await communicator.communicate("*leaves", "claim")

        assert exc_info.value.error_type is ErrorType.PERMANENT
        assert len(transport.sent) == 1
        assert CommunicatorState.AUTH_FAILED in communicator.transitions

    @pytest.mark.asyncio
    async def test_send_failure_becomes_transport_error(self, leaves_bot):
        transport = QueueTransport()
        transport.send = AsyncMock(side_effect=OSError("connection reset"))
        communicator = make_communicator(leaves_bot, transport)

        with pytest.raises(TransportError, match="connection reset") as exc_info:
            await communicator.communicate("*leaves", "claim")

        assert exc_info.value.command == "*leaves"

    @pytest.mark.asyncio
    async def test_closed_transport_error_passes_through(self, leaves_bot):
        transport = QueueTransport()
        transport.close()
        communicator = make_communicator(leaves_bot, transport)

        with pytest.raises(TransportError, match="closed"):
            await communicator.communicate("*leaves", "claim")

    @pytest.mark.asyncio
    async def test_custom_retry_budget(self, leaves_bot):
        transport = QueueTransport()
        communicator = make_communicator(leaves_bot, transport, max_retries=1)

        with pytest.raises(CommunicationFailedError) as exc_info:
            await communicator.communicate("*leaves")

        assert exc_info.value.sends == 2
        assert "after 1 attempts" in str(exc_info.value)


COOKIE_CLAIMED = (
    "[Cookies] [P10: default] chronophylos -> Raisin cookie! (-6) DansGame "
    "| 79 total! | 2 hour cooldown... 🍪"
)
COOLDOWN_RESET = "[Shop] chronophylos, your cooldown has been reset! (-7) Good Luck... ThankEgg"


class TestStaleMessages:
    """Test suite for messages received before a command is sent."""

    @pytest.mark.asyncio
    async def test_late_reply_does_not_answer_next_command(self, cookie_bot, says):
        def responder(channel, text):
            if text.startswith("!cookie"):
                # Answered twice: once late for the first send, once for the retry.
                return [says(cookie_bot, COOKIE_CLAIMED), says(cookie_bot, COOKIE_CLAIMED)]
            return [says(cookie_bot, COOLDOWN_RESET)]

        communicator = make_communicator(cookie_bot, QueueTransport(responder))

        claim = await communicator.communicate("!cookie", "claim")
        reset = await communicator.communicate("!cdr", "cdr")

        assert claim.amount == -6
        assert reset.rule == "cdr_success"

    @pytest.mark.asyncio
    async def test_queued_messages_are_discarded(self, leaves_bot, says, transport):
        transport.feed(
            says(leaves_bot, LEAVES_COOLDOWN),
            IncomingMessage(author_id="999", author_name="randomviewer", body="hello"),
        )
        transport.responder = lambda channel, text: [says(leaves_bot, LEAVES_SUCCESS)]
        communicator = make_communicator(leaves_bot, transport)

        result = await communicator.communicate("*leaves", "claim")

        assert isinstance(result, Success)
        assert transport.messages().drain() == []

    @pytest.mark.asyncio
    async def test_queued_auth_failure_is_still_reported(self, leaves_bot, transport):
        transport.feed(IncomingMessage.notice("Login authentication failed"))
        communicator = make_communicator(leaves_bot, transport)

        with pytest.raises(AuthenticationError) as exc_info:
            await communicator.communicate("*leaves", "claim")

        assert exc_info.value.command == "*leaves"
        assert transport.sent == []
        assert communicator.transitions == [
            CommunicatorState.IDLE, CommunicatorState.AUTH_FAILED, CommunicatorState.GAVE_UP,
        ]
