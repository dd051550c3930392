import asyncio

import pytest

from conftest import LEAVES_SUCCESS
from core.correlator import Correlator
from core.errors import AuthenticationError, StreamExhaustedError
from core.transport import IncomingMessage, MessageStream

OTHER_USER = "🍃 @someoneelse > Four Leaf Clover 🍀 (+3) | You've got 9 leaves now! | Get more leaves in 1 hour..."


def stream_of(*messages, close=True):
    stream = MessageStream()
    for message in messages:
        stream.feed(message)
    if close:
        stream.close()
    return stream


class TestAccepts:
    """Test suite for single-message correlation."""

    def test_accepts_reply_addressed_to_us(self, leaves_bot, says):
        assert Correlator(leaves_bot).accepts(says(leaves_bot, LEAVES_SUCCESS)) == LEAVES_SUCCESS

    def test_addressee_match_ignores_case(self, leaves_bot, says):
        body = LEAVES_SUCCESS.replace("@chronophylos", "@Chronophylos")
        assert Correlator(leaves_bot).accepts(says(leaves_bot, body)) == body

    def test_rejects_other_authors(self, leaves_bot):
        message = IncomingMessage(author_id="1", author_name="impostor", body=LEAVES_SUCCESS)
        assert Correlator(leaves_bot).accepts(message) is None

    def test_rejects_replies_to_other_callers(self, leaves_bot, says):
        assert Correlator(leaves_bot).accepts(says(leaves_bot, OTHER_USER)) is None

    def test_rejects_unaddressed_messages(self, leaves_bot, says):
        assert Correlator(leaves_bot).accepts(says(leaves_bot, "leavesbot is back online")) is None

    def test_ignores_ordinary_notices(self, leaves_bot):
        assert Correlator(leaves_bot).accepts(IncomingMessage.notice(LEAVES_SUCCESS)) is None

    def test_auth_failure_notice_raises(self, leaves_bot):
        with pytest.raises(AuthenticationError):
            Correlator(leaves_bot).accepts(IncomingMessage.notice("Login authentication failed"))

    def test_auth_failure_text_in_chat_is_not_a_notice(self, leaves_bot, says):
        message = says(leaves_bot, "Login authentication failed")
        assert Correlator(leaves_bot).accepts(message) is None


class TestStreams:
    """Test suite for stream correlation."""

    @pytest.mark.asyncio
    async def test_next_reply_skips_noise(self, leaves_bot, says):
        stream = stream_of(
            IncomingMessage(author_id="1", body=LEAVES_SUCCESS),
            says(leaves_bot, OTHER_USER),
            says(leaves_bot, LEAVES_SUCCESS),
        )
        assert await Correlator(leaves_bot).next_reply(stream) == LEAVES_SUCCESS

    @pytest.mark.asyncio
    async def test_exhausted_stream(self, leaves_bot, says):
        stream = stream_of(says(leaves_bot, OTHER_USER))
        with pytest.raises(StreamExhaustedError):
            await Correlator(leaves_bot).next_reply(stream)

    @pytest.mark.asyncio
    async def test_auth_failure_short_circuits(self, leaves_bot, says):
        stream = stream_of(
            IncomingMessage.notice("Login authentication failed"),
            says(leaves_bot, LEAVES_SUCCESS),
        )
        with pytest.raises(AuthenticationError):
            await Correlator(leaves_bot).next_reply(stream)

    @pytest.mark.asyncio
    async def test_replies_never_yield_foreign_addressees(self, leaves_bot, says):
        bodies = [OTHER_USER, LEAVES_SUCCESS, OTHER_USER.replace("someoneelse", "chronophylos_2"),
                  LEAVES_SUCCESS]
        stream = stream_of(*(says(leaves_bot, body) for body in bodies))
        correlator = Correlator(leaves_bot)
        seen = [body async for body in correlator.replies(stream)]
        assert seen == [LEAVES_SUCCESS, LEAVES_SUCCESS]

    @pytest.mark.asyncio
    async def test_timeout_does_not_lose_late_reply(self, leaves_bot, says):
        stream = MessageStream()
        correlator = Correlator(leaves_bot)
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(correlator.next_reply(stream), timeout=0.01)
        stream.feed(says(leaves_bot, LEAVES_SUCCESS))
        assert await asyncio.wait_for(correlator.next_reply(stream), timeout=1) == LEAVES_SUCCESS
