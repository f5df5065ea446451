"""Tests for environment-driven settings."""

from walletlink.config import WalletLinkSettings
from walletlink.signing import DEFAULT_MAX_AGE_MS


def test_defaults(monkeypatch):
    for name in ("MAX_AGE_MS", "CHECK_TIMESTAMP", "HEADER_NAME"):
        monkeypatch.delenv(f"WALLETLINK_{name}", raising=False)
    settings = WalletLinkSettings(_env_file=None)
    assert settings.max_age_ms == DEFAULT_MAX_AGE_MS
    assert settings.check_timestamp is True
    assert settings.header_name == "Authorization"


def test_reads_prefixed_env(monkeypatch):
    monkeypatch.setenv("WALLETLINK_APP_NAME", "Example Shop")
    monkeypatch.setenv("WALLETLINK_MAX_AGE_MS", "1000")
    monkeypatch.setenv("WALLETLINK_CHECK_TIMESTAMP", "false")

    settings = WalletLinkSettings(_env_file=None)

    assert settings.app_name == "Example Shop"
    assert settings.max_age_ms == 1000
    assert settings.check_timestamp is False


def test_verification_options_carry_clock_skew(monkeypatch):
    monkeypatch.setenv("WALLETLINK_MAX_CLOCK_SKEW_MS", "2500")

    options = WalletLinkSettings(_env_file=None).verification_options()

    assert options["max_clock_skew_ms"] == 2500
    assert set(options) == {"check_timestamp", "max_age_ms", "max_clock_skew_ms"}
