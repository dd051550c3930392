"""Cookies: ``!cookie`` against thepositivebot.

Replies carry a ``[Cookies]`` or ``[Shop]`` badge and, for claims, the
caller's rank (``[Silver]``, ``[P6: default]``)::

    [Cookies] [Silver] efdev -> Nothing Found!! (±0) RPGEmpty | 84 total! | 2 hour cooldown... 🍪
    [Cookies] [P6: default] chronophylos you have already claimed a cookie and have 4957 of them! 🍪 Please wait in 2 hour intervals!
    [Shop] chronophylos, your cooldown has been reset! (-7) Good Luck... ThankEgg
    [Shop] chronophylos, you can purchase your next cooldown reset in 2 hrs, 58 mins, 54 secs!
    [Cookies] chronophylos you reset your rank and are now [P1: default]! PartyHat PogChamp ...
    [Cookies] chronophylos you are not ranked high enough to Prestige yet! FeelsBadMan You need Leader rank OR 5000+ cookies!

After a claim worth at least 8 cookies a cooldown reset (``!cdr``) is
bought, which restarts the loop right away; at 5000 cookies the caller
prestiges.  Both thresholds can be overridden per profile.
"""

import re
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Mapping, Optional, Union

from core.classifier import OnCooldown, Success
from core.oracle import CooldownOracle
from core.patterns import MatchRule, OutcomeKind, PatternRegistry
from core.scheduler import PurchaseRule
from games.base import GameBot

COOLDOWN_API = "https://api.roaringiron.com/cooldown"

_RANK = r"(?P<rank>(P\d+: )?\w+)"

CLAIM_SUCCESS = (
    r"\[Cookies\] \[" + _RANK + r"\] (?P<username>\w+) -> (?P<cookie>[^!]+)!+ "
    r"\((?P<amount>[+\-±]\d+)\) \w+ \| (?P<total>\d+) total!"
)
CLAIM_COOLDOWN = (
    r"\[Cookies\] \[" + _RANK + r"\] (?P<username>\w+) you have already claimed a cookie "
    r"and have (?P<total>\d+) of them!"
)
CDR_SUCCESS = r"\[Shop\] (?P<username>\w+), your cooldown has been reset!"
CDR_COOLDOWN = (
    r"\[Shop\] (?P<username>\w+), you can purchase your next cooldown reset in "
    r"(((?P<hours>\d+) hrs?, )?(?P<minutes>\d+) mins?, )?(?P<seconds>\d+) secs?!"
)
PRESTIGE_SUCCESS = (
    r"\[Cookies\] (?P<username>\w+) you reset your rank and are now \[" + _RANK + r"\]!"
)
PRESTIGE_REFUSED = (
    r"\[Cookies\] (?P<username>\w+) you are not ranked high enough to Prestige yet! "
    r"FeelsBadMan You need Leader rank OR 5000\+ cookies!"
)
GENERIC_ANSWER = r"\[(Cookies|Shop)\]( \[" + _RANK + r"\])? (?P<username>\w+)"

REGISTRY = PatternRegistry(
    addressed_to_me=GENERIC_ANSWER,
    rules=[
        MatchRule("claim_success", "claim", CLAIM_SUCCESS, OutcomeKind.SUCCESS,
                  ("username", "rank", "amount", "total")),
        MatchRule("claim_cooldown", "claim", CLAIM_COOLDOWN, OutcomeKind.COOLDOWN,
                  ("username", "rank", "total")),
        MatchRule("cdr_success", "cdr", CDR_SUCCESS, OutcomeKind.SUCCESS),
        MatchRule("cdr_cooldown", "cdr", CDR_COOLDOWN, OutcomeKind.COOLDOWN,
                  ("username", "seconds")),
        MatchRule("prestige_success", "prestige", PRESTIGE_SUCCESS, OutcomeKind.SUCCESS,
                  ("username", "rank")),
        MatchRule("prestige_refused", "prestige", PRESTIGE_REFUSED, OutcomeKind.COOLDOWN),
    ],
)


class Rank(Enum):
    """Cookie ranks, lowest first."""

    DEFAULT = "default"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"
    MASTERS = "masters"
    GRANDMASTERS = "grandmasters"
    LEADER = "leader"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PrestigeRank:
    """Rank plus prestige level (``P6: default`` -> prestige 6, ``default``)."""

    prestige: int
    rank: Rank

    def __str__(self) -> str:
        if self.prestige:
            return f"P{self.prestige}: {self.rank}"
        return str(self.rank)


_PRESTIGE_RANK = re.compile(r"^(?:P(?P<prestige>\d+): )?(?P<rank>\w+)$")


def parse_prestige_rank(text: str) -> PrestigeRank:
    """Parse a rank token such as ``"Silver"`` or ``"P6: default"``.

    Raises:
        ValueError: On an unknown rank name or malformed token.
    """
    match = _PRESTIGE_RANK.match(text.strip())
    if match is None:
        raise ValueError(f"invalid rank {text!r}")
    rank = Rank(match.group("rank").lower())
    return PrestigeRank(prestige=int(match.group("prestige") or 0), rank=rank)


class CookieBot(GameBot):
    """Claims cookies every two hours and spends them in the shop."""

    name = "cookies"
    currency = "cookies"
    counterpart_name = "thepositivebot"
    counterpart_id = "425363834"
    claim_command = "!cookie"
    claim_interval = timedelta(hours=2)
    registry = REGISTRY
    default_purchases = (
        PurchaseRule(group="cdr", command="!cdr", min_amount=8, restart_on_success=True),
        PurchaseRule(group="prestige", command="!prestige", min_total=5000),
    )

    def build_oracle(self, headers: Optional[Mapping[str, str]] = None,
                     **http_options: Any) -> CooldownOracle:
        return CooldownOracle(f"{COOLDOWN_API}/{self.username}", headers=headers, **http_options)

    @staticmethod
    def rank_of(outcome: Union[Success, OnCooldown]) -> Optional[PrestigeRank]:
        """Rank carried by a reply, if any."""
        token = outcome.extras.get("rank")
        if token is None:
            return None
        return parse_prestige_rank(token)

    def describe(self, outcome: Union[Success, OnCooldown]) -> str:
        parts = []
        cookie = outcome.extras.get("cookie")
        if cookie:
            parts.append(cookie.strip())
        token = outcome.extras.get("rank")
        if token is not None:
            try:
                parts.append(f"rank {parse_prestige_rank(token)}")
            except ValueError:
                parts.append(f"rank {token}")
        return ", ".join(parts)
