"""Error taxonomy for the claim bot.

Every exception raised by the core carries an :class:`ErrorType` so the
scheduler can decide between retrying, backing off and stopping an
instance without inspecting message text.

Classes:
    ErrorType: Enum classifying errors for recovery decisions.
    ClaimBotError: Root of all project exceptions.
    CommunicationError: Base for failures of a single request/reply exchange.
"""

from enum import Enum
from typing import Optional


class ErrorType(Enum):
    """Classification of error types for recovery.

    Error Categories:
    - TRANSIENT: Reply timeout, oracle/presence HTTP failure (retryable)
    - PROTOCOL: Reply or grammar could not be interpreted (terminal per request)
    - STREAM_CLOSED: The incoming message stream ended (terminal per instance)
    - PERMANENT: Authentication rejected by the chat server (terminal per instance)
    - CONFIG_ERROR: Bad credentials, headers or game configuration (fatal at startup)
    """
    TRANSIENT = "transient"
    PROTOCOL = "protocol"
    STREAM_CLOSED = "stream_closed"
    PERMANENT = "permanent"
    CONFIG_ERROR = "config_error"


class ClaimBotError(Exception):
    """Base class for all claim bot errors."""

    error_type: ErrorType = ErrorType.PROTOCOL


class ConfigurationError(ClaimBotError):
    """Invalid configuration detected before any loop iteration starts."""

    error_type = ErrorType.CONFIG_ERROR


class RuleFieldError(ClaimBotError):
    """A rule matched but one of its required fields is missing or malformed.

    This points at a broken grammar, not at an unexpected reply.
    """

    def __init__(self, rule: str, field: str, detail: str = "missing") -> None:
        self.rule = rule
        self.field = field
        self.detail = detail
        super().__init__(f"Rule '{rule}' matched but field '{field}' is {detail}")


class OracleError(ClaimBotError):
    """An HTTP collaborator (cooldown oracle, chatters list) failed."""

    error_type = ErrorType.TRANSIENT


class CommunicationError(ClaimBotError):
    """A request/reply exchange with the counterpart bot failed.

    Attributes:
        command: Command text (without anti-duplication marker).
    """

    def __init__(self, message: str, command: Optional[str] = None) -> None:
        self.command = command
        if command is not None:
            message = f"{message} (command {command!r})"
        super().__init__(message)


class ReplyTimeoutError(CommunicationError):
    """No correlated reply arrived within the wait budget."""

    error_type = ErrorType.TRANSIENT

    def __init__(self, timeout: float, attempt: int, command: Optional[str] = None) -> None:
        self.timeout = timeout
        self.attempt = attempt
        super().__init__(
            f"No reply within {timeout:g}s on attempt {attempt + 1}", command,
        )


class CommunicationFailedError(CommunicationError):
    """Every attempt timed out.

    Attributes:
        attempts: Retry budget that was exhausted.
        sends: Number of times the command was published.
    """

    error_type = ErrorType.TRANSIENT

    def __init__(self, attempts: int, sends: int, command: Optional[str] = None) -> None:
        self.attempts = attempts
        self.sends = sends
        super().__init__(f"Communication failed after {attempts} attempts", command)


class StreamExhaustedError(CommunicationError):
    """The incoming message stream closed before a correlated reply arrived."""

    error_type = ErrorType.STREAM_CLOSED

    def __init__(self, command: Optional[str] = None) -> None:
        super().__init__("Did not receive a message from the chat server", command)


class AuthenticationError(CommunicationError):
    """The chat server rejected our credentials."""

    error_type = ErrorType.PERMANENT

    def __init__(self, command: Optional[str] = None) -> None:
        super().__init__("Could not authenticate with the chat server", command)


class UnparseableReplyError(CommunicationError):
    """A reply was addressed to us but no rule of the expected group fired.

    Attributes:
        group: Rule group that was tried (``None`` for all rules).
        reply: The raw reply body.
    """

    error_type = ErrorType.PROTOCOL

    def __init__(self, reply: str, group: Optional[str] = None,
                 command: Optional[str] = None) -> None:
        self.reply = reply
        self.group = group
        super().__init__(
            f"No '{group or 'any'}' rule matched the addressed reply", command,
        )


class TransportError(CommunicationError):
    """Publishing a command to the channel failed."""

    error_type = ErrorType.PROTOCOL


INSTANCE_FATAL_ERRORS = (AuthenticationError, StreamExhaustedError, ConfigurationError)
"""Errors that always stop the owning bot instance."""
