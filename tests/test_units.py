import pytest

from dnsagent.units import parse_bytes


@pytest.mark.parametrize(
    "text, want",
    [
        ("42", 42),
        ("42MB", 44040192),
        ("42mb", 44040192),
        ("42 MB", 44040192),
        ("42 mb", 44040192),
        ("42.5MB", 44564480),
        ("42.5 MB", 44564480),
        ("42M", 44040192),
        ("42m", 44040192),
        ("42 M", 44040192),
        ("42 m", 44040192),
        ("42.5M", 44564480),
        ("42.5 M", 44564480),
        ("1,234.03 MB", 1293974241),
    ],
)
def test_parse_bytes(text, want):
    assert parse_bytes(text) == want


def test_units_scale_consistently():
    assert parse_bytes("1kb") * 1024 == parse_bytes("1MB")
    assert parse_bytes("1 b") == parse_bytes("1")


@pytest.mark.parametrize("text", ["", "MB", "42 XB", "1.2.3", "99999999EB"])
def test_parse_bytes_errors(text):
    with pytest.raises(ValueError):
        parse_bytes(text)