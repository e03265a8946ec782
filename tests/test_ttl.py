import pytest

from cfddns.ttl import TTL, TTL_AUTO


@pytest.mark.parametrize(
    ("seconds", "description"),
    [
        (1, "1 (auto)"),
        (2, "2"),
        (30, "30"),
        (293, "293"),
        (842, "842"),
        (37284789, "37284789"),
    ],
)
def test_describe(seconds, description):
    assert TTL(seconds).describe() == description


@pytest.mark.parametrize(
    ("seconds", "text"),
    [
        (1, "1"),
        (2, "2"),
        (30, "30"),
        (293, "293"),
        (842, "842"),
        (37284789, "37284789"),
    ],
)
def test_str(seconds, text):
    assert str(TTL(seconds)) == text


@pytest.mark.parametrize("seconds", [1, 2, 30, 293, 842, 37284789])
def test_int(seconds):
    assert int(TTL(seconds)) == seconds


def test_auto_is_one():
    assert TTL_AUTO == TTL(1)
    assert TTL_AUTO.describe() == "1 (auto)"