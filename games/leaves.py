"""Leaves: ``*leaves`` against leavesbot.

Reply shapes (every reply starts with ``🍃 @<user> > ``)::

    🍃 @chronophylos > Four Leaf Clover 🍀 (+24) | You've got 34 leaves now! | Get more leaves in 1 hour... 🍃
    🍃 @chronophylos > FeelsBadMan You need to wait 45:58 minutes until you can get more leaves | You've got 34 leaves 🍃

leavesbot has no cooldown API, so the loop relies on the wait stated in
cooldown replies and checks that leavesbot is in the channel before each
claim.  Its shop (``*cdr``, ``*multiplier``) is not wired up because the
shop replies are not part of the grammar below.
"""

from datetime import timedelta

from core.patterns import MatchRule, OutcomeKind, PatternRegistry
from games.base import GameBot

LEAF = "\U0001F343"

CLAIM_SUCCESS = (
    LEAF + r" @(?P<username>\w+) > .* \((?P<amount>[+-]\d+)\) \| "
    r"You've got (?P<total>-?\d+) leaves now! \| Get more leaves in 1 hour\.\.\."
)
CLAIM_COOLDOWN = (
    LEAF + r" @(?P<username>\w+) > FeelsBadMan You need to wait "
    r"(?P<minutes>\d+):(?P<seconds>\d+) minutes until you can get more leaves \| "
    r"You've got (?P<total>-?\d+) leaves"
)
GENERIC_ANSWER = LEAF + r" @(?P<username>\w+) > .*"

REGISTRY = PatternRegistry(
    addressed_to_me=GENERIC_ANSWER,
    rules=[
        MatchRule("claim_success", "claim", CLAIM_SUCCESS, OutcomeKind.SUCCESS,
                  ("username", "amount", "total")),
        MatchRule("claim_cooldown", "claim", CLAIM_COOLDOWN, OutcomeKind.COOLDOWN,
                  ("username", "total")),
    ],
)


class LeavesBot(GameBot):
    """Claims leaves once an hour."""

    name = "leaves"
    currency = "leaves"
    counterpart_name = "leavesbot"
    counterpart_id = "731132488"
    claim_command = "*leaves"
    claim_interval = timedelta(hours=1)
    registry = REGISTRY
    presence_checked = True
