"""Reply grammar registry.

A :class:`PatternRegistry` holds the fixed set of :class:`MatchRule` objects
describing every reply shape a counterpart bot produces, plus one broad
"addressed-to-me" pattern used only for correlation.  Registries are built
once per game at import time and never mutated afterwards.

Rules are grouped by the command that provokes them (``"claim"``,
``"cdr"``, ...).  Within a group, rules are tried in registration order, so
success shapes must be registered before cooldown shapes.

Usage::

    from core.patterns import MatchRule, OutcomeKind, PatternRegistry

    REGISTRY = PatternRegistry(
        addressed_to_me=r"@(?P<username>\\w+) ",
        rules=[
            MatchRule("claim_success", "claim", r"...", OutcomeKind.SUCCESS,
                      ("username", "amount", "total")),
        ],
    )
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional, Pattern, Tuple, Union

from core.errors import ConfigurationError

USERNAME_FIELD = "username"
TIME_FIELDS: Tuple[str, ...] = ("hours", "minutes", "seconds")


class OutcomeKind(Enum):
    """Which half of a command's outcome pair a rule produces."""

    SUCCESS = "success"
    COOLDOWN = "cooldown"


@dataclass(frozen=True)
class MatchRule:
    """A named classification rule over free text.

    Attributes:
        name: Unique rule name (e.g. ``"claim_success"``).
        group: Command group the rule belongs to (e.g. ``"claim"``).
        pattern: Compiled regular expression with named groups.
        kind: :class:`OutcomeKind` produced when the rule fires.
        required: Named groups that must be present when the rule matches.
    """

    name: str
    group: str
    pattern: Pattern[str]
    kind: OutcomeKind
    required: Tuple[str, ...] = (USERNAME_FIELD,)

    def __init__(
        self,
        name: str,
        group: str,
        pattern: Union[str, Pattern[str]],
        kind: OutcomeKind,
        required: Iterable[str] = (USERNAME_FIELD,),
    ) -> None:
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        required = tuple(required)
        if USERNAME_FIELD not in required:
            raise ConfigurationError(f"Rule '{name}' must require a username field")
        missing = [f for f in required if f not in compiled.groupindex]
        if missing:
            raise ConfigurationError(
                f"Rule '{name}' requires fields its pattern never captures: {missing}"
            )
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "group", group)
        object.__setattr__(self, "pattern", compiled)
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "required", required)

    @property
    def fields(self) -> Tuple[str, ...]:
        """All named groups the pattern can capture."""
        return tuple(self.pattern.groupindex)

    @property
    def time_fields(self) -> Tuple[str, ...]:
        """Remaining-time components this rule can capture."""
        return tuple(f for f in TIME_FIELDS if f in self.pattern.groupindex)

    def search(self, text: str) -> Optional["re.Match[str]"]:
        return self.pattern.search(text)


@dataclass(frozen=True)
class PatternRegistry:
    """Immutable grammar for one game/counterpart pairing.

    Attributes:
        addressed_to_me: Broad pattern capturing the addressee as ``username``.
        rules: All rules, in priority order.
    """

    addressed_to_me: Pattern[str]
    rules: Tuple[MatchRule, ...] = field(default_factory=tuple)

    def __init__(
        self,
        addressed_to_me: Union[str, Pattern[str]],
        rules: Iterable[MatchRule] = (),
    ) -> None:
        compiled = (
            re.compile(addressed_to_me)
            if isinstance(addressed_to_me, str)
            else addressed_to_me
        )
        if USERNAME_FIELD not in compiled.groupindex:
            raise ConfigurationError(
                "The addressed-to-me pattern must capture a 'username' group"
            )
        rules = tuple(rules)
        seen: Dict[str, MatchRule] = {}
        for rule in rules:
            if rule.name in seen:
                raise ConfigurationError(f"Duplicate rule name '{rule.name}'")
            seen[rule.name] = rule
        object.__setattr__(self, "addressed_to_me", compiled)
        object.__setattr__(self, "rules", rules)

    @property
    def groups(self) -> Tuple[str, ...]:
        """Command groups known to this registry, in first-seen order."""
        ordered: Dict[str, None] = {}
        for rule in self.rules:
            ordered.setdefault(rule.group, None)
        return tuple(ordered)

    def rules_for(self, group: Optional[str] = None) -> Tuple[MatchRule, ...]:
        """Return the rules of *group* in priority order (all rules if ``None``).

        Raises:
            ConfigurationError: If *group* is not registered.
        """
        if group is None:
            return self.rules
        selected = tuple(rule for rule in self.rules if rule.group == group)
        if not selected:
            raise ConfigurationError(f"Unknown rule group '{group}'")
        return selected

    def get(self, name: str) -> MatchRule:
        """Look up a rule by name."""
        for rule in self.rules:
            if rule.name == name:
                return rule
        raise KeyError(name)

    def addressee(self, text: str) -> Optional[str]:
        """Return the addressee captured by the broad pattern, if any."""
        match = self.addressed_to_me.search(text)
        if match is None:
            return None
        return match.group(USERNAME_FIELD)
