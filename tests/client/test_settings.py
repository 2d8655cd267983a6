"""Tests for runtime sync settings."""

import pytest

from smsrelay.client.settings import SyncSettings
from smsrelay.client.state import LedgerStore
from smsrelay.core.types import SyncMode


@pytest.fixture
def fresh_settings(ledger: LedgerStore) -> SyncSettings:
    """Settings over an empty ledger."""
    return SyncSettings(ledger)


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self, fresh_settings: SyncSettings) -> None:
        assert fresh_settings.sync_enabled is False
        assert fresh_settings.sync_mode == SyncMode.ALL
        assert fresh_settings.sync_enabled_since == 0
        assert fresh_settings.destination_id is None
        assert fresh_settings.last_full_sync_at == 0

    def test_malformed_values_fall_back(self, ledger: LedgerStore, fresh_settings: SyncSettings) -> None:
        ledger.set_state("sync_mode", "SOMETIMES")
        ledger.set_state("last_full_sync_at", "yesterday")

        assert fresh_settings.sync_mode == SyncMode.ALL
        assert fresh_settings.last_full_sync_at == 0


class TestEnableDisable:
    """Tests for enabling and disabling delivery."""

    def test_enable_all(self, fresh_settings: SyncSettings) -> None:
        fresh_settings.enable(SyncMode.ALL, now=1_000)

        assert fresh_settings.sync_enabled is True
        assert fresh_settings.sync_mode == SyncMode.ALL
        assert fresh_settings.sync_enabled_since == 0

    def test_disable(self, fresh_settings: SyncSettings) -> None:
        fresh_settings.enable(SyncMode.ALL, now=1_000)
        fresh_settings.disable()
        assert fresh_settings.sync_enabled is False

    def test_new_only_sets_baseline_once(self, fresh_settings: SyncSettings) -> None:
        """Re-selecting NEW_ONLY must not move the baseline."""
        fresh_settings.enable(SyncMode.NEW_ONLY, now=1_000)
        fresh_settings.set_mode(SyncMode.ALL, now=2_000)
        fresh_settings.enable(SyncMode.NEW_ONLY, now=3_000)

        assert fresh_settings.sync_enabled_since == 1_000

    def test_destination_roundtrip(self, fresh_settings: SyncSettings) -> None:
        fresh_settings.destination_id = "-100123"
        assert fresh_settings.destination_id == "-100123"
        fresh_settings.destination_id = None
        assert fresh_settings.destination_id is None


class TestWatermark:
    """Tests for the selection watermark."""

    def test_all_mode_has_no_cutoff(self, fresh_settings: SyncSettings) -> None:
        fresh_settings.enable(SyncMode.ALL, now=1_000)
        assert fresh_settings.watermark() == 0

    def test_new_only_uses_baseline(self, fresh_settings: SyncSettings) -> None:
        fresh_settings.enable(SyncMode.NEW_ONLY, now=5_000)
        assert fresh_settings.watermark() == 5_000

    def test_new_only_without_baseline_behaves_as_all(
        self, ledger: LedgerStore, fresh_settings: SyncSettings
    ) -> None:
        ledger.set_state("sync_mode", SyncMode.NEW_ONLY.value)
        assert fresh_settings.watermark() == 0

    def test_clear_last_full_sync(self, fresh_settings: SyncSettings) -> None:
        fresh_settings.last_full_sync_at = 123
        fresh_settings.clear_last_full_sync()
        assert fresh_settings.last_full_sync_at == 0
