from datetime import timedelta

import pytest

from core.utils import as_seconds, format_duration, normalize_channel, normalize_name


class TestFormatDuration:
    @pytest.mark.parametrize("value,expected", [
        (0, "0s"),
        (0.4, "0s"),
        (42, "42s"),
        (2758, "45m 58s"),
        (3600, "1h"),
        (10734.9, "2h 58m 54s"),
        (timedelta(hours=2), "2h"),
        (-5, "0s"),
    ])
    def test_format(self, value, expected):
        assert format_duration(value) == expected


def test_as_seconds():
    assert as_seconds(timedelta(minutes=1, seconds=5)) == 65.0
    assert as_seconds(7) == 7.0


def test_normalize_name():
    assert normalize_name("Okay_Eg") == "okayeg"
    assert normalize_name("the-positive bot") == "thepositivebot"


def test_normalize_channel():
    assert normalize_channel(" #Pajlada ") == "pajlada"
    assert normalize_channel("forsen") == "forsen"
