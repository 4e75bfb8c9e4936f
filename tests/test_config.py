from __future__ import annotations

import pytest

import config


@pytest.fixture(autouse=True)
def fresh_settings():
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()


def test_parse_csv():
    assert config._parse_csv(" 0xAA, ,0xbb ", lower=True) == ["0xaa", "0xbb"]
    assert config._parse_csv("") == []


def test_parse_pairs_skips_malformed_items():
    assert config._parse_pairs("1:20, bogus, 137 : 30 ,:5,7:") == {"1": "20", "137": "30"}


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("TOP_UP_THRESHOLD_PCT", "75")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("CHAIN_DEFAULT_GAS_PRICES", "1:20000000000,8453:100000000")
    monkeypatch.setenv("TOKEN_RATES", "usdt:0.15")

    s = config.get_settings()

    assert s.TOP_UP_THRESHOLD_PCT == 75
    assert s.SCHEDULER_ENABLED is False
    assert s.CHAIN_DEFAULT_GAS_PRICES == {1: 20_000_000_000, 8453: 100_000_000}
    assert s.TOKEN_RATES == {"USDT": "0.15"}


def test_defaults(monkeypatch):
    for name in ("QUOTE_TTL_SEC", "QUOTE_BUFFER_PCT", "QUOTE_SURCHARGE_PCT", "HEALTH_CHECK_INTERVAL_SEC"):
        monkeypatch.delenv(name, raising=False)

    s = config.get_settings()

    assert s.QUOTE_TTL_SEC == 60
    assert s.QUOTE_BUFFER_PCT == 5
    assert s.QUOTE_SURCHARGE_PCT == 20
    assert s.HEALTH_CHECK_INTERVAL_SEC == 10
