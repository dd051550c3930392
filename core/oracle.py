"""HTTP collaborators: cooldown oracle and channel presence.

Both clients are thin wrappers around ``aiohttp``.  Every failure (network
error, timeout, bad status, malformed JSON) is reported as
:class:`~core.errors.OracleError`, which the scheduler handles with a short
fixed delay instead of aborting the loop.

Classes:
    JsonHttpClient: Shared GET-and-decode helper with default headers.
    CooldownOracle: ``{"can_claim": bool, "seconds_left": float}`` endpoint.
    ChattersClient: Twitch chatters list, used to check the counterpart
        bot is in the channel before claiming.
"""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional, Protocol

import aiohttp

from core import __version__
from core.errors import ConfigurationError, OracleError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
CHATTERS_URL = "https://tmi.twitch.tv/group/user/{channel}/chatters"


def build_default_headers(
    user_agent: Optional[str] = None,
    repository: Optional[str] = None,
) -> Dict[str, str]:
    """Build the headers sent with every HTTP request.

    Args:
        user_agent: Overrides the default ``claimbot / <version>`` agent.
        repository: Project URL sent as ``X-Github-Repo`` when given.

    Raises:
        ConfigurationError: If a value is not a valid header value.
    """
    headers = {"User-Agent": user_agent or f"claimbot / {__version__}"}
    if repository:
        headers["X-Github-Repo"] = repository

    for name, value in headers.items():
        if not value or any(ch in value for ch in "\r\n\0"):
            raise ConfigurationError(f"Invalid value for header {name}: {value!r}")
        try:
            value.encode("latin-1")
        except UnicodeEncodeError as e:
            raise ConfigurationError(f"Invalid value for header {name}: {e}") from e
    return headers


class CooldownSource(Protocol):
    """Anything that can tell how long a claim is still on cooldown."""

    async def seconds_remaining(self) -> Optional[float]:
        """``None`` when a claim is allowed now, else the remaining seconds."""
        ...


class JsonHttpClient:
    """GET JSON documents with shared headers, timeout and TLS policy.

    Args:
        headers: Default request headers (see :func:`build_default_headers`).
        timeout: Total request timeout in seconds.
        accept_invalid_certs: Skip TLS certificate verification.
        session: Optional long-lived ``aiohttp.ClientSession``; a short-lived
            session is opened per request otherwise.
    """

    def __init__(
        self,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        accept_invalid_certs: bool = False,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.headers = dict(headers) if headers is not None else build_default_headers()
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.accept_invalid_certs = accept_invalid_certs
        self._session = session

    async def get_json(self, url: str, params: Optional[Mapping[str, str]] = None) -> Any:
        """Fetch *url* and decode the body as JSON.

        Raises:
            OracleError: On network errors, timeouts, non-200 answers or
                undecodable bodies.
        """
        try:
            if self._session is not None:
                return await self._get(self._session, url, params)
            async with aiohttp.ClientSession() as session:
                return await self._get(session, url, params)
        except OracleError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise OracleError(f"Request to {url} failed: {e!r}") from e

    async def _get(self, session: aiohttp.ClientSession, url: str,
                   params: Optional[Mapping[str, str]]) -> Any:
        kwargs: Dict[str, Any] = {"headers": self.headers, "timeout": self.timeout}
        if params:
            kwargs["params"] = dict(params)
        if self.accept_invalid_certs:
            kwargs["ssl"] = False

        async with session.get(url, **kwargs) as resp:
            if resp.status != 200:
                raise OracleError(f"{url} answered with HTTP {resp.status}")
            data = await resp.json(content_type=None)
        logger.debug("Got response from %s: %s", url, data)
        return data


class CooldownOracle(JsonHttpClient):
    """External cooldown oracle keyed by the caller's identity.

    The endpoint answers ``{"can_claim": bool, "seconds_left": float}``;
    ``seconds_left`` is only read when ``can_claim`` is false.
    """

    def __init__(self, url: str, params: Optional[Mapping[str, str]] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.url = url
        self.params = dict(params) if params else None

    def parse_response(self, data: Any) -> Optional[float]:
        """Turn the oracle document into seconds remaining (``None`` = claim now).

        Raises:
            OracleError: If the document does not have the expected shape.
        """
        if not isinstance(data, dict) or not isinstance(data.get("can_claim"), bool):
            raise OracleError(f"Unexpected cooldown response: {data!r}")
        if data["can_claim"]:
            return None
        seconds_left = data.get("seconds_left")
        if isinstance(seconds_left, bool) or not isinstance(seconds_left, (int, float)):
            raise OracleError(f"Cooldown response without seconds_left: {data!r}")
        return max(float(seconds_left), 0.0)

    async def seconds_remaining(self) -> Optional[float]:
        data = await self.get_json(self.url, self.params)
        return self.parse_response(data)


class ChattersClient(JsonHttpClient):
    """Check whether a user is currently in a channel's chatter list.

    Uses the legacy unauthenticated ``tmi.twitch.tv`` chatters endpoint, which
    Twitch has retired, so presence checks are off unless ``check_presence``
    is set.
    """

    url_template = CHATTERS_URL

    async def chatters(self, channel: str) -> Dict[str, list]:
        """Return the chatter categories (``viewers``, ``moderators``, ...)."""
        data = await self.get_json(self.url_template.format(channel=channel.lower()))
        groups = data.get("chatters") if isinstance(data, dict) else None
        if not isinstance(groups, dict):
            raise OracleError(f"Unexpected chatters response for #{channel}")
        return groups

    async def is_present(self, channel: str, name: str) -> bool:
        """Return ``True`` if *name* appears in any chatter category of *channel*."""
        name = name.lower()
        groups = await self.chatters(channel)
        return any(
            isinstance(members, list) and name in (m.lower() for m in members if isinstance(m, str))
            for members in groups.values()
        )
