"""Unit tests for settings and shared core helpers."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from clubhouse.core.config import Settings
from clubhouse.core.datetime_utils import ensure_utc, from_timestamp
from clubhouse.core.exceptions import (
    ErrorKind,
    ProviderConfigurationError,
    ProviderErrorKind,
    ProviderNotFoundError,
)


class TestStripeEnabled:
    """Tests for Settings.STRIPE_ENABLED."""

    def test_missing_keys(self):
        """Billing is disabled without both keys."""
        assert Settings(STRIPE_SECRET_KEY="sk_test_abc").STRIPE_ENABLED is False

    def test_placeholder_keys(self):
        """Keys copied from the example env file do not count."""
        settings = Settings(
            STRIPE_SECRET_KEY="sk_test_your_stripe_secret_key",
            STRIPE_PUBLISHABLE_KEY="pk_test_placeholder",
        )

        assert settings.STRIPE_ENABLED is False

    def test_real_keys(self):
        settings = Settings(STRIPE_SECRET_KEY="sk_test_abc", STRIPE_PUBLISHABLE_KEY="pk_test_abc")

        assert settings.STRIPE_ENABLED is True


def test_expiry_exempt_roles():
    """Exempt roles are parsed from a comma separated list."""
    settings = Settings(EXPIRY_EXEMPT_ROLES="admin, board ,")

    assert settings.expiry_exempt_roles == ["admin", "board"]


def test_anchor_hour_validated():
    with pytest.raises(ValidationError):
        Settings(TRIAL_ANCHOR_HOUR=24)


def test_ensure_utc():
    """Naive values are read as UTC and aware values are converted."""
    naive = datetime(2024, 6, 1, 12, 0)
    toronto = datetime(2024, 6, 1, 8, 0, tzinfo=timezone(timedelta(hours=-4)))

    assert ensure_utc(naive) == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    assert ensure_utc(toronto).hour == 12
    assert ensure_utc(None) is None
    assert from_timestamp(None) is None


def test_provider_error_kinds():
    """Provider errors carry both a surface kind and a provider subdivision."""
    assert ProviderNotFoundError().kind == ErrorKind.PROVIDER
    assert ProviderNotFoundError().provider_kind == ProviderErrorKind.NOT_FOUND
    assert ProviderConfigurationError().kind == ErrorKind.CONFIGURATION
