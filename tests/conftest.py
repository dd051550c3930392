import pytest

from core.transport import IncomingMessage, QueueTransport
from games.cookies import CookieBot
from games.leaves import LeavesBot

ME = "chronophylos"

LEAVES_SUCCESS = (
    "🍃 @chronophylos > Four Leaf Clover 🍀 (+24) | You've got 34 leaves now! "
    "| Get more leaves in 1 hour..."
)
LEAVES_COOLDOWN = (
    "🍃 @chronophylos > FeelsBadMan You need to wait 45:58 minutes until you can "
    "get more leaves | You've got 34 leaves 🍃"
)
LEAVES_HELP = (
    "🍃 @chronophylos > You can find a list of all commands here: "
    "https://beatz.dev/leavesbot 🍃 "
)


@pytest.fixture
def leaves_bot():
    return LeavesBot(ME, "#Pajlada")


@pytest.fixture
def cookie_bot():
    return CookieBot(ME, "cookiechannel")


@pytest.fixture
def says():
    """Build a chat message written by the counterpart of *bot*."""
    def _says(bot, body):
        return IncomingMessage(
            author_id=bot.counterpart_id,
            author_name=bot.counterpart_name,
            body=body,
            channel=bot.channel(),
        )
    return _says


@pytest.fixture
def transport():
    return QueueTransport()
