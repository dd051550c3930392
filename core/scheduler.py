"""Per-instance claim loop.

:class:`ClaimScheduler` drives one bot instance forever:

1. Wait out an active cooldown.  The cooldown comes from the previous
   iteration's ``OnCooldown`` reply, from an external oracle, or from a
   probe command, in that order.
2. Optionally check that the counterpart bot is in the channel; if not,
   suspend for a long fixed interval.
3. Send the claim command.
4. On success, send the follow-up purchases whose thresholds are met
   (:class:`PurchaseRule`).
5. Sleep for the claim interval and repeat.

Error policy:
    * Oracle / presence failures: short fixed delay, then a new iteration.
    * Authentication failure, closed stream, bad configuration: the
      instance stops (the error propagates out of :meth:`ClaimScheduler.run`).
    * Other request failures (unparseable reply, retry budget exhausted,
      broken grammar, send failure): logged, then the instance waits
      ``request_error_delay`` before trying again, unless
      ``stop_on_request_error`` is set.

:func:`run_instances` runs many schedulers concurrently so that one stopped
instance never takes its siblings down.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from core.classifier import OnCooldown, Outcome, Success, format_signed_amount
from core.errors import (
    INSTANCE_FATAL_ERRORS,
    CommunicationFailedError,
    ConfigurationError,
    OracleError,
    RuleFieldError,
    TransportError,
    UnparseableReplyError,
)
from core.oracle import ChattersClient, CooldownSource
from core.utils import as_seconds, format_duration

if TYPE_CHECKING:
    from core.communicator import Communicator
    from games.base import GameBot

logger = logging.getLogger(__name__)

REQUEST_ERRORS = (
    UnparseableReplyError,
    RuleFieldError,
    CommunicationFailedError,
    TransportError,
)
"""Terminal for one request; the instance survives unless configured otherwise."""


class PurchaseRule(BaseModel):
    """Follow-up purchase triggered by a successful claim.

    Attributes:
        group: Rule group used to classify the purchase reply.
        command: Command text to send (e.g. ``"!cdr"``).
        min_amount: Fire only when the claimed amount is at least this.
        min_total: Fire only when the new total is at least this.
        restart_on_success: A successful purchase resets the claim
            cooldown, so the loop restarts immediately.
    """

    model_config = ConfigDict(frozen=True)

    group: str
    command: str
    min_amount: Optional[int] = None
    min_total: Optional[int] = None
    restart_on_success: bool = False

    def applies_to(self, claimed: Success) -> bool:
        """Return ``True`` if every configured threshold is met by *claimed*."""
        if self.min_amount is not None:
            if claimed.amount is None or claimed.amount < self.min_amount:
                return False
        if self.min_total is not None:
            if claimed.total is None or claimed.total < self.min_total:
                return False
        return True


@dataclass(frozen=True)
class CooldownDeadline:
    """Point in time after which the next claim attempt is permitted."""

    at: datetime
    source: str

    @classmethod
    def after(cls, seconds: float, source: str, now: Optional[datetime] = None) -> "CooldownDeadline":
        now = now or datetime.now(timezone.utc)
        return cls(at=now + timedelta(seconds=seconds), source=source)

    def remaining(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return max((self.at - now).total_seconds(), 0.0)


class IterationResult(Enum):
    """How one :meth:`ClaimScheduler.run_once` iteration ended."""

    CLAIMED = "claimed"
    ON_COOLDOWN = "on_cooldown"
    WAITED = "waited"
    RESTART = "restart"
    ABSENT = "absent"
    ORACLE_FAILED = "oracle_failed"


class ClaimScheduler:
    """Control loop for one bot instance.

    Args:
        bot: The game instance (grammar, commands, intervals).
        communicator: Communicator bound to the instance's transport.
        oracle: Optional external cooldown source.
        presence: Optional chatters client for the presence check.
        purchases: Purchase rules; ``None`` uses ``bot.default_purchases``.
        claim_interval: Override of ``bot.claim_interval`` in seconds.
        oracle_retry_delay: Delay after an oracle/presence failure.
        absent_suspend: Suspension while the counterpart is absent.
        request_error_delay: Delay after a terminal-per-request error.
        stop_on_request_error: Stop the instance on request errors too.
        sleep: Coroutine used for every wait; defaults to a wait that
            returns early once :meth:`stop` is called.

    Raises:
        ConfigurationError: If a purchase rule names an unknown rule group.
    """

    def __init__(
        self,
        bot: "GameBot",
        communicator: "Communicator",
        oracle: Optional[CooldownSource] = None,
        presence: Optional[ChattersClient] = None,
        purchases: Optional[Sequence[PurchaseRule]] = None,
        claim_interval: Optional[float] = None,
        oracle_retry_delay: float = 10.0,
        absent_suspend: float = 1800.0,
        request_error_delay: float = 300.0,
        stop_on_request_error: bool = False,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.bot = bot
        self.communicator = communicator
        self.oracle = oracle
        self.presence = presence
        self.purchases: List[PurchaseRule] = list(
            bot.default_purchases if purchases is None else purchases
        )
        self.claim_interval = float(claim_interval or as_seconds(bot.claim_interval))
        self.oracle_retry_delay = oracle_retry_delay
        self.absent_suspend = absent_suspend
        self.request_error_delay = request_error_delay
        self.stop_on_request_error = stop_on_request_error
        self._sleep_impl = sleep
        self._stop = asyncio.Event()
        self._pending_wait: Optional[float] = None
        self.deadline: Optional[CooldownDeadline] = None
        self.last_outcome: Optional[Outcome] = None

        known_groups = bot.registry.groups
        for rule in self.purchases:
            if rule.group not in known_groups:
                raise ConfigurationError(
                    f"[{bot.name}] Purchase '{rule.command}' uses unknown rule group '{rule.group}'"
                )

    @property
    def prefix(self) -> str:
        return f"[{self.bot.name}]"

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask the loop to finish after the current step."""
        self._stop.set()

    async def run(self) -> None:
        """Run iterations until :meth:`stop` is called.

        Raises:
            AuthenticationError: The chat server rejected our credentials.
            StreamExhaustedError: The message stream closed.
            ConfigurationError: The game is misconfigured.
            CommunicationError: A request error while ``stop_on_request_error``.
        """
        logger.info("%s Running in #%s", self.prefix, self.bot.channel())

        while not self.stopped:
            try:
                await self.run_once()
            except INSTANCE_FATAL_ERRORS as e:
                logger.error("%s Stopping instance: %s", self.prefix, e)
                self.stop()
                raise
            except REQUEST_ERRORS as e:
                if self.stop_on_request_error:
                    logger.error("%s Stopping instance: %s", self.prefix, e)
                    self.stop()
                    raise
                logger.error("%s Request failed: %s", self.prefix, e)
                await self._sleep(self.request_error_delay, "after failed request")

        logger.info("%s Stopped", self.prefix)

    async def run_once(self) -> IterationResult:
        """Run a single iteration of the claim loop."""
        # 1. Cooldown
        try:
            wait = await self._cooldown_remaining()
        except OracleError as e:
            logger.warning("%s Could not get cooldown: %s", self.prefix, e)
            await self._sleep(self.oracle_retry_delay, "before asking again")
            return IterationResult.ORACLE_FAILED

        if wait:
            logger.info("%s Cooldown active", self.prefix)
            await self._sleep_until(CooldownDeadline.after(wait, "cooldown"), "for cooldown")
            return IterationResult.WAITED
        logger.debug("%s Cooldown not active", self.prefix)

        # 2. Presence
        if self.presence is not None and self.bot.presence_checked:
            try:
                present = await self.presence.is_present(
                    self.bot.channel(), self.bot.counterpart_name,
                )
            except OracleError as e:
                logger.warning("%s Could not check chatters: %s", self.prefix, e)
                await self._sleep(self.oracle_retry_delay, "before checking again")
                return IterationResult.ORACLE_FAILED
            if not present:
                logger.warning(
                    "%s %s is not in #%s. Suspending bot for %s",
                    self.prefix, self.bot.counterpart_name, self.bot.channel(),
                    format_duration(self.absent_suspend),
                )
                await self._sleep(self.absent_suspend, "while counterpart is absent")
                return IterationResult.ABSENT

        # 3. Claim
        logger.info("%s Claiming %s", self.prefix, self.bot.currency)
        outcome = await self.communicator.communicate(self.bot.claim_command, self.bot.claim_group)
        self.last_outcome = outcome

        if isinstance(outcome, OnCooldown):
            self._pending_wait = self._wait_after_refusal(outcome)
            logger.warning("%s Could not claim %s since cooldown is active", self.prefix, self.bot.currency)
            return IterationResult.ON_COOLDOWN

        self._log_claim(outcome)

        # 4. Purchases
        if await self._purchase(outcome):
            return IterationResult.RESTART

        # 5. Next claim
        await self._sleep_until(CooldownDeadline.after(self.claim_interval, "claim"), "until next claim")
        return IterationResult.CLAIMED

    async def _cooldown_remaining(self) -> Optional[float]:
        if self._pending_wait is not None:
            wait, self._pending_wait = self._pending_wait, None
            return wait
        if self.oracle is not None:
            return await self.oracle.seconds_remaining()
        if self.bot.probe_command:
            return await self._probe()
        return None

    async def _probe(self) -> Optional[float]:
        outcome = await self.communicator.communicate(self.bot.probe_command, self.bot.probe_group)
        if isinstance(outcome, OnCooldown):
            wait = outcome.wait
            return wait.total_seconds() if wait is not None else self.claim_interval
        return None

    def _wait_after_refusal(self, outcome: OnCooldown) -> Optional[float]:
        if outcome.wait is not None:
            return outcome.wait.total_seconds()
        # No stated wait: ask the oracle/probe again next iteration
        if self.oracle is not None or self.bot.probe_command:
            return None
        return self.claim_interval

    def _log_claim(self, outcome: Success) -> None:
        details = self.bot.describe(outcome)
        suffix = f" ({details})" if details else ""
        if outcome.amount == 0:
            logger.info("%s No %s found, total %s%s", self.prefix, self.bot.currency,
                        outcome.total, suffix)
        else:
            logger.info(
                "%s Claimed %s %s for a total of %s%s",
                self.prefix,
                format_signed_amount(outcome.amount) if outcome.amount is not None else "some",
                self.bot.currency,
                outcome.total,
                suffix,
            )

    async def _purchase(self, claimed: Success) -> bool:
        """Send the follow-up purchases; return ``True`` to restart the loop."""
        for rule in self.purchases:
            if not rule.applies_to(claimed):
                continue
            logger.info("%s Trying to buy %s", self.prefix, rule.group)
            result = await self.communicator.communicate(rule.command, rule.group)
            if isinstance(result, Success):
                logger.info("%s Bought %s", self.prefix, rule.group)
                if rule.restart_on_success:
                    return True
            else:
                logger.warning("%s Could not buy %s", self.prefix, rule.group)
        return False

    async def _sleep_until(self, deadline: CooldownDeadline, reason: str) -> None:
        self.deadline = deadline
        await self._sleep(deadline.remaining(), reason)

    async def _sleep(self, seconds: float, reason: str) -> None:
        if seconds <= 0 or self.stopped:
            return
        logger.info("%s Waiting %s %s", self.prefix, format_duration(seconds), reason)
        if self._sleep_impl is not None:
            await self._sleep_impl(seconds)
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


async def run_instances(schedulers: Sequence[ClaimScheduler]) -> List[Optional[BaseException]]:
    """Run *schedulers* concurrently until all of them have stopped.

    A scheduler that stops with an error is logged and does not affect
    the others.

    Returns:
        One entry per scheduler: ``None`` for a clean stop, else the error.
    """
    tasks = [
        asyncio.create_task(scheduler.run(), name=f"claim-{scheduler.bot.name}")
        for scheduler in schedulers
    ]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    outcomes: List[Optional[BaseException]] = []
    for scheduler, result in zip(schedulers, results):
        if isinstance(result, BaseException):
            logger.error("%s Instance stopped: %r", scheduler.prefix, result)
            outcomes.append(result)
        else:
            outcomes.append(None)
    return outcomes
