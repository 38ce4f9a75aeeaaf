"""Unit tests for the fee schedule and trial configuration provider."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from clubhouse.platform.billing.settings_provider import MembershipSettingsProvider
from clubhouse.schemas import (
    MembershipFeesUpdate,
    MembershipLevel,
    TrialConfig,
    TrialConfigSchedule,
    TrialType,
)


@pytest.fixture
def provider():
    """Create a provider billing in CAD."""
    return MembershipSettingsProvider(currency="CAD")


@pytest.mark.asyncio
async def test_fees_fall_back_to_defaults(mock_db, provider):
    """Stored fees override the defaults and malformed ones are ignored."""
    with patch("clubhouse.crud.app_setting.get_many", new_callable=AsyncMock) as mock_get_many:
        mock_get_many.return_value = {
            "membership_fee:Full": "50",
            "membership_fee:Student": "twenty",
        }

        fees = await provider.get_fees(mock_db)

    assert fees.currency == "cad"
    assert fees.fees[MembershipLevel.FULL] == Decimal("50")
    assert fees.fees[MembershipLevel.STUDENT] == Decimal("25")
    assert fees.fees[MembershipLevel.CORPORATE] == Decimal("125")


@pytest.mark.asyncio
async def test_update_fees_writes_each_level(mock_db, provider):
    """Each updated level is upserted under its own key."""
    with (
        patch("clubhouse.crud.app_setting.upsert", new_callable=AsyncMock) as mock_upsert,
        patch("clubhouse.crud.app_setting.get_many", new_callable=AsyncMock) as mock_get_many,
    ):
        mock_get_many.return_value = {"membership_fee:Full": "60"}

        fees = await provider.update_fees(
            mock_db, MembershipFeesUpdate(fees={MembershipLevel.FULL: Decimal("60")})
        )

    mock_upsert.assert_awaited_once()
    assert mock_upsert.await_args.kwargs["key"] == "membership_fee:Full"
    assert mock_upsert.await_args.kwargs["value"] == "60"
    assert fees.fees[MembershipLevel.FULL] == Decimal("60")
    mock_db.commit.assert_awaited_once()


def test_negative_fee_rejected():
    """Fees cannot be negative."""
    with pytest.raises(ValueError):
        MembershipFeesUpdate(fees={MembershipLevel.FULL: Decimal("-1")})


@pytest.mark.asyncio
async def test_trial_schedule_reads_stored_json(mock_db, provider):
    """Stored trial configs are parsed and malformed ones use the default."""
    stored = {
        "trial_config:Full": json.dumps({"type": "duration_months", "months": 6}),
        "trial_config:Student": "{not json",
    }
    with patch("clubhouse.crud.app_setting.get_many", new_callable=AsyncMock) as mock_get_many:
        mock_get_many.return_value = stored

        schedule = await provider.get_trial_schedule(mock_db)

    assert schedule.trial[MembershipLevel.FULL] == TrialConfig(
        type=TrialType.DURATION_MONTHS, months=6
    )
    assert schedule.trial[MembershipLevel.STUDENT].type == TrialType.DURATION_MONTHS
    assert schedule.trial[MembershipLevel.STUDENT].months == 12


def test_trial_schedule_must_cover_every_level():
    """A partial trial schedule is rejected."""
    with pytest.raises(ValueError):
        TrialConfigSchedule(trial={MembershipLevel.FULL: TrialConfig()})


@pytest.mark.asyncio
async def test_policy_reads_current_storage(mock_db, provider):
    """Every policy read goes to storage, so admin edits apply immediately."""
    with patch("clubhouse.crud.app_setting.get_many", new_callable=AsyncMock) as mock_get_many:
        mock_get_many.side_effect = [
            {"membership_fee:Corporate": "100"},
            {},
            {"membership_fee:Corporate": "150"},
            {},
        ]

        first = await provider.get_policy(mock_db)
        second = await provider.get_policy(mock_db)

    assert first.fee_for_level(MembershipLevel.CORPORATE) == Decimal("100")
    assert second.fee_for_level(MembershipLevel.CORPORATE) == Decimal("150")
    assert first.currency == "cad"
