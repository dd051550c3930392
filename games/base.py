"""Base game bot for the claim bot.

This module defines :class:`GameBot`, the superclass every counterpart-bot
integration inherits from.  A game bot is pure description: it knows the
counterpart's identity, the commands to send, the reply grammar and the
claim interval, and it implements the ``TargetDescriptor`` capability the
correlator needs.  All behaviour lives in :mod:`core.communicator` and
:mod:`core.scheduler`.

Subclasses set the class attributes and, when the game has one, override
:meth:`GameBot.build_oracle`.
"""

import logging
from datetime import timedelta
from typing import Any, Mapping, Optional, Pattern, Tuple, Union

from core.classifier import OnCooldown, Success
from core.errors import ConfigurationError
from core.oracle import CooldownSource
from core.patterns import PatternRegistry
from core.scheduler import PurchaseRule
from core.utils import normalize_channel

logger = logging.getLogger(__name__)


class GameBot:
    """One game played in one channel on behalf of one caller.

    Class attributes:
        name: Canonical game name (registry key, log prefix).
        currency: What the game hands out (``"leaves"``, ``"egs"``, ...).
        counterpart_name: Login name of the counterpart bot.
        counterpart_id: Stable user id of the counterpart bot.
        claim_command: Command that claims the reward.
        claim_group: Rule group classifying claim replies.
        claim_interval: Claim cooldown of the game.
        registry: Reply grammar of the counterpart bot.
        default_purchases: Purchase rules used when a profile sets none.
        presence_checked: Check the chatters list before claiming.
        probe_command: Optional command whose reply reveals the cooldown.
        probe_group: Rule group classifying probe replies.
    """

    name: str = ""
    currency: str = ""
    counterpart_name: str = ""
    counterpart_id: str = ""
    claim_command: str = ""
    claim_group: str = "claim"
    claim_interval: timedelta = timedelta(hours=1)
    registry: PatternRegistry
    default_purchases: Tuple[PurchaseRule, ...] = ()
    presence_checked: bool = False
    probe_command: Optional[str] = None
    probe_group: Optional[str] = None

    def __init__(self, username: str, channel: str) -> None:
        """Bind the game to a caller and a channel.

        Args:
            username: Our own login name.
            channel: Channel the counterpart sits in.

        Raises:
            ConfigurationError: If either value is empty.
        """
        self.username = username.strip().lower()
        self._channel = normalize_channel(channel)
        if not self.username:
            raise ConfigurationError(f"[{self.name}] No username configured")
        if not self._channel:
            raise ConfigurationError(f"[{self.name}] No channel configured")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(username={self.username!r}, channel={self._channel!r})"

    # TargetDescriptor
    def channel(self) -> str:
        return self._channel

    def expected_author_id(self) -> str:
        return self.counterpart_id

    def caller_identity(self) -> str:
        return self.username

    def addressed_to_me_pattern(self) -> Pattern[str]:
        return self.registry.addressed_to_me

    def describe(self, outcome: Union[Success, OnCooldown]) -> str:
        """Game-specific details of a reply worth logging (may be empty)."""
        return ""

    def build_oracle(
        self,
        headers: Optional[Mapping[str, str]] = None,
        **http_options: Any,
    ) -> Optional[CooldownSource]:
        """Return the game's cooldown oracle, or ``None`` if it has none.

        Args:
            headers: Default HTTP headers.
            **http_options: ``timeout`` / ``accept_invalid_certs`` passed
                to the HTTP client.
        """
        return None
