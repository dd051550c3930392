"""Okayeg: ``=eg`` against okayegbot.

Reply shapes::

    @chronophylos | is this a YOLK? nam1Okayeg | +1 egs | Total egs: 92
    @chronophylos nam1Sadeg no eg. come back in 56 minutes, 42 seconds Total egs: 30
    @chronophylos nam1Sadeg no eg. come back in 50 minutes, Total egs: 30

The seconds component of a cooldown reply is optional.  The cooldown is
read from ``api.okayeg.com``, which reports the time of the last claim
rather than the time left.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from core.errors import OracleError
from core.oracle import CooldownOracle
from core.patterns import MatchRule, OutcomeKind, PatternRegistry
from games.base import GameBot

logger = logging.getLogger(__name__)

USER_API = "https://api.okayeg.com/user"
CLAIM_COOLDOWN = timedelta(hours=1)

CLAIM_SUCCESS = (
    r"@(?P<username>\w+) \| [^\|]* \| (?P<amount>[+-]\d+) +egs \| Total egs: (?P<total>\d+) "
)
CLAIM_REFUSED = (
    r"@(?P<username>\w+) nam1Sadeg no eg\. come back in (?P<minutes>\d+) minutes?,"
    r"( (?P<seconds>\d+) seconds?)? Total egs: (?P<total>\d+)"
)
GENERIC_ANSWER = r"@(?P<username>\w+) .*"

REGISTRY = PatternRegistry(
    addressed_to_me=GENERIC_ANSWER,
    rules=[
        MatchRule("claim_success", "claim", CLAIM_SUCCESS, OutcomeKind.SUCCESS,
                  ("username", "amount", "total")),
        MatchRule("claim_cooldown", "claim", CLAIM_REFUSED, OutcomeKind.COOLDOWN,
                  ("username", "minutes", "total")),
    ],
)


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class OkayegCooldownOracle(CooldownOracle):
    """Cooldown derived from the last claim time reported by api.okayeg.com."""

    def __init__(self, username: str, cooldown: timedelta = CLAIM_COOLDOWN, **kwargs: Any) -> None:
        super().__init__(USER_API, params={"username": username}, **kwargs)
        self.cooldown = cooldown

    def parse_response(self, data: Any, now: Optional[datetime] = None) -> Optional[float]:
        if not isinstance(data, dict) or not isinstance(data.get("cooldown"), str):
            raise OracleError(f"Unexpected user response: {data!r}")
        try:
            last_claim = parse_timestamp(data["cooldown"])
        except ValueError as e:
            raise OracleError(f"Invalid cooldown timestamp {data['cooldown']!r}") from e

        now = now or datetime.now(timezone.utc)
        logger.debug("Server reported cooldown as %s, current time is %s", last_claim, now)
        remaining = (last_claim + self.cooldown - now).total_seconds()
        return remaining if remaining > 0 else None


class EgBot(GameBot):
    """Claims egs once an hour."""

    name = "okayeg"
    currency = "egs"
    counterpart_name = "okayegbot"
    counterpart_id = "75501168"
    claim_command = "=eg"
    claim_interval = CLAIM_COOLDOWN
    registry = REGISTRY
    presence_checked = True

    def build_oracle(self, headers: Optional[Mapping[str, str]] = None,
                     **http_options: Any) -> OkayegCooldownOracle:
        return OkayegCooldownOracle(self.username, headers=headers, **http_options)
