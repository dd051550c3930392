"""Game bot factory registry for the claim bot.

Maps human-friendly game identifiers (and a few aliases) to the classes
implementing them.  Values are dotted-path strings resolved lazily on
first use, so importing the registry does not import every game module.

Usage::

    from core.registry import get_game_class

    cls = get_game_class("cookies")
    if cls:
        bot = cls(channel="...", username="...")
"""

import importlib
from typing import Dict, List, Optional, Union

from core.utils import normalize_name

# ---------------------------------------------------------------------------
# Central Registry
# ---------------------------------------------------------------------------
# Values are either a class reference or a dotted-path string
# ``"module.ClassName"`` that is resolved lazily on first use.
GAME_REGISTRY: Dict[str, Union[type, str]] = {
    "leaves": "games.leaves.LeavesBot",
    "leavesbot": "games.leaves.LeavesBot",
    "okayeg": "games.okayeg.EgBot",
    "eg": "games.okayeg.EgBot",
    "egs": "games.okayeg.EgBot",
    "okayegbot": "games.okayeg.EgBot",
    "cookies": "games.cookies.CookieBot",
    "cookie": "games.cookies.CookieBot",
    "thepositivebot": "games.cookies.CookieBot",
}


def get_game_class(game: str) -> Optional[type]:
    """Resolve a game bot class from the registry by name.

    Lookup ignores case, ``_``, ``-`` and spaces.  If the registry value
    is a dotted-path string the module is imported lazily and the class
    attribute is returned.

    Args:
        game: Game identifier (e.g. ``"leaves"``, ``"okayeg"``).

    Returns:
        The bot class, or ``None`` if *game* is not registered.
    """
    cls_or_str = GAME_REGISTRY.get(normalize_name(game))
    if not cls_or_str:
        return None

    if isinstance(cls_or_str, str):
        module_path, class_name = cls_or_str.rsplit('.', 1)
        module = importlib.import_module(module_path)
        return getattr(module, class_name)

    return cls_or_str


def available_games() -> List[str]:
    """Canonical game names (one per class), in registration order."""
    seen: Dict[str, str] = {}
    for name, target in GAME_REGISTRY.items():
        key = target if isinstance(target, str) else f"{target.__module__}.{target.__name__}"
        seen.setdefault(key, name)
    return list(seen.values())
