"""
Core module for the chat claim bot.

This package contains the request/reply machinery, configuration and
scheduling components that drive the chat minigame claim loops.

Submodules:
    config: Application settings (``BotSettings``, ``GameProfile``) via Pydantic.
    patterns: ``PatternRegistry`` / ``MatchRule`` reply grammars.
    classifier: ``ResponseClassifier`` and the ``Success`` / ``OnCooldown`` outcomes.
    correlator: ``Correlator`` filtering the message stream down to our replies.
    communicator: ``Communicator`` send/await/retry state machine.
    scheduler: ``ClaimScheduler`` per-instance control loop and ``PurchaseRule``.
    transport: Channel transport contract, in-memory and Twitch IRC transports.
    oracle: aiohttp cooldown oracle and chatters (presence) clients.
    errors: ``ErrorType`` taxonomy and exception hierarchy.
    registry: Factory registry mapping game names to bot classes.
    logging_setup: Compressed rotating file + safe console logging.
    utils: Duration formatting and name normalisation helpers.
"""

__version__ = "0.4.0"
