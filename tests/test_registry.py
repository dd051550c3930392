import pytest

from core.registry import GAME_REGISTRY, available_games, get_game_class
from games.cookies import CookieBot
from games.leaves import LeavesBot
from games.okayeg import EgBot


def test_get_game_class_by_name():
    """Test resolving canonical names."""
    assert get_game_class("leaves") is LeavesBot
    assert get_game_class("okayeg") is EgBot
    assert get_game_class("cookies") is CookieBot


@pytest.mark.parametrize("alias,expected", [
    ("LEAVES", LeavesBot),
    ("Okay_Eg", EgBot),
    ("okay-eg", EgBot),
    ("eg", EgBot),
    ("ThePositiveBot", CookieBot),
])
def test_get_game_class_aliases(alias, expected):
    """Test that lookup ignores case and separators."""
    assert get_game_class(alias) is expected


def test_get_game_class_invalid():
    assert get_game_class("unknown_game") is None


def test_all_registry_keys_resolve():
    """Verify all keys in registry can be resolved without error."""
    for key in GAME_REGISTRY:
        assert get_game_class(key) is not None


def test_available_games_lists_one_name_per_class():
    assert available_games() == ["leaves", "okayeg", "cookies"]


def test_class_references_are_accepted(monkeypatch):
    monkeypatch.setitem(GAME_REGISTRY, "direct", LeavesBot)
    assert get_game_class("direct") is LeavesBot
