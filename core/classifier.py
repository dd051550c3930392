"""Reply classification.

Turns the body of a correlated reply into a typed outcome:

* :class:`Success` -- the command did what it was asked to do.
* :class:`OnCooldown` -- the command was refused, usually because it is on
  cooldown; carries the remaining wait when the reply states one.
* :class:`Unparseable` -- the text matched no rule of the requested group.

A rule that matches but lacks one of its required fields raises
:class:`~core.errors.RuleFieldError` instead: that is a grammar bug, not a
legitimate reply.

Numeric helpers:
    parse_signed_amount: ``"+24"`` / ``"-6"`` / ``"±0"`` -> ``int``.
    format_signed_amount: Inverse of :func:`parse_signed_amount`.
    combine_duration: Sum optional hour/minute/second components.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Optional, Tuple, Union

from core.errors import RuleFieldError
from core.patterns import (
    TIME_FIELDS,
    USERNAME_FIELD,
    MatchRule,
    OutcomeKind,
    PatternRegistry,
)

logger = logging.getLogger(__name__)

NEUTRAL_SIGN = "±"
"""Symbol used by counterpart bots for a "no change" delta (``±0``)."""

NUMERIC_FIELDS: Tuple[str, ...] = ("amount", "total")
_TIME_SCALES: Dict[str, int] = {"hours": 3600, "minutes": 60, "seconds": 1}


def parse_signed_amount(text: str) -> int:
    """Parse a signed magnitude such as ``"+24"``, ``"-6"`` or ``"±0"``.

    The neutral symbol carries no sign: ``"±5"`` parses as ``5``.

    Raises:
        ValueError: If *text* is not a signed integer.
    """
    text = text.strip()
    if text.startswith(NEUTRAL_SIGN):
        text = text[len(NEUTRAL_SIGN):]
        if not text.isdigit():
            raise ValueError(f"invalid amount {text!r}")
        return int(text)
    return int(text)


def format_signed_amount(amount: int) -> str:
    """Format *amount* the way counterpart bots print deltas."""
    if amount == 0:
        return f"{NEUTRAL_SIGN}0"
    return f"{amount:+d}"


def combine_duration(
    hours: Optional[int] = None,
    minutes: Optional[int] = None,
    seconds: Optional[int] = None,
) -> timedelta:
    """Sum the present time components; absent components count as zero."""
    return timedelta(
        hours=hours or 0, minutes=minutes or 0, seconds=seconds or 0,
    )


@dataclass(frozen=True)
class Success:
    """A command succeeded.

    Attributes:
        rule: Name of the rule that fired.
        username: Addressee captured from the reply.
        amount: Signed delta, when the reply reports one.
        total: New total, when the reply reports one.
        extras: Any other captured text fields (reward name, rank, ...).
    """

    rule: str
    username: str
    amount: Optional[int] = None
    total: Optional[int] = None
    extras: Dict[str, str] = field(default_factory=dict, compare=False)

    kind = OutcomeKind.SUCCESS


@dataclass(frozen=True)
class OnCooldown:
    """A command was refused (on cooldown or otherwise declined).

    Attributes:
        rule: Name of the rule that fired.
        username: Addressee captured from the reply.
        hours: Remaining hours, if stated.
        minutes: Remaining minutes, if stated.
        seconds: Remaining seconds, if stated.
        total: Current total, when the reply reports one.
        extras: Any other captured text fields.
    """

    rule: str
    username: str
    hours: Optional[int] = None
    minutes: Optional[int] = None
    seconds: Optional[int] = None
    total: Optional[int] = None
    extras: Dict[str, str] = field(default_factory=dict, compare=False)

    kind = OutcomeKind.COOLDOWN

    @property
    def wait(self) -> Optional[timedelta]:
        """Remaining wait, or ``None`` if the reply states no time at all."""
        if self.hours is None and self.minutes is None and self.seconds is None:
            return None
        return combine_duration(self.hours, self.minutes, self.seconds)


@dataclass(frozen=True)
class Unparseable:
    """Sentinel: the reply matched no rule of the requested group."""

    text: str
    group: Optional[str] = None


Outcome = Union[Success, OnCooldown]
Classification = Union[Success, OnCooldown, Unparseable]


class ResponseClassifier:
    """Apply a registry's rules, in priority order, to one reply.

    Args:
        registry: The game's :class:`PatternRegistry`.
        group: Restrict classification to one command group
            (``None`` tries every rule).
    """

    def __init__(self, registry: PatternRegistry, group: Optional[str] = None) -> None:
        self.registry = registry
        self.group = group
        self.rules = registry.rules_for(group)

    def classify(self, text: str) -> Classification:
        """Classify *text*; the first structurally matching rule wins.

        Raises:
            RuleFieldError: If the winning rule lacks a required field.
        """
        for rule in self.rules:
            match = rule.search(text)
            if match is None:
                continue
            logger.debug("Reply matched rule '%s'", rule.name)
            return self._build(rule, match.groupdict())

        logger.debug("No '%s' rule matched reply: %s", self.group or "any", text)
        return Unparseable(text=text, group=self.group)

    @staticmethod
    def _build(rule: MatchRule, captured: Dict[str, Optional[str]]) -> Outcome:
        for name in rule.required:
            if captured.get(name) is None:
                raise RuleFieldError(rule.name, name)

        def integer(name: str, signed: bool = False) -> Optional[int]:
            raw = captured.get(name)
            if raw is None:
                return None
            try:
                return parse_signed_amount(raw) if signed else int(raw)
            except ValueError as e:
                raise RuleFieldError(rule.name, name, f"not an integer ({raw!r})") from e

        known = {USERNAME_FIELD, *NUMERIC_FIELDS, *TIME_FIELDS}
        extras = {
            name: value for name, value in captured.items()
            if name not in known and value is not None
        }
        username = captured[USERNAME_FIELD]

        if rule.kind is OutcomeKind.SUCCESS:
            return Success(
                rule=rule.name,
                username=username,
                amount=integer("amount", signed=True),
                total=integer("total", signed=True),
                extras=extras,
            )

        return OnCooldown(
            rule=rule.name,
            username=username,
            hours=integer("hours"),
            minutes=integer("minutes"),
            seconds=integer("seconds"),
            total=integer("total", signed=True),
            extras=extras,
        )
