"""
assetrewards/tests/test_metrics.py

Tests for metrics collection and configuration.
"""

from pathlib import Path

import pytest

from assetrewards.config import (
    FUTURE_BLOCK_HEIGHT_OFFSET,
    MAX_PAYMENTS_PER_BATCH,
    RewardsConfig,
)
from assetrewards.errors import NoEligibleHolders, RewardsError, ValidationError
from assetrewards.metrics import RewardsMetrics


class TestRewardsMetrics:
    """Test RewardsMetrics."""

    def test_counters(self):
        metrics = RewardsMetrics()
        metrics.record_scheduled()
        metrics.record_scheduled()
        metrics.record_cancelled()
        metrics.record_batch(True, invalid=1)
        metrics.record_batch(False)
        metrics.record_completed(50)

        stats = metrics.get_stats()
        assert stats["requests_scheduled_total"] == 2
        assert stats["requests_cancelled_total"] == 1
        assert stats["batches_succeeded_total"] == 1
        assert stats["batches_failed_total"] == 1
        assert stats["payments_completed_total"] == 50
        assert stats["invalid_addresses_total"] == 1

    def test_prometheus_format(self):
        metrics = RewardsMetrics()
        metrics.record_computed()
        metrics.record_allocation_failure("infeasible")
        metrics.record_allocation_failure("infeasible")

        output = metrics.collect()

        assert "# TYPE assetrewards_payouts_computed_total counter" in output
        assert "assetrewards_payouts_computed_total 1" in output
        assert 'assetrewards_allocation_failures_total{reason="infeasible"} 2' in output
        assert "assetrewards_uptime_seconds" in output
        assert output.endswith("\n")

    def test_reset(self):
        metrics = RewardsMetrics()
        metrics.record_scheduled()
        metrics.record_allocation_failure("no_eligible_holders")
        metrics.reset_counters()

        stats = metrics.get_stats()
        assert stats["requests_scheduled_total"] == 0
        assert stats["allocation_failure_reasons"] == {}


class TestRewardsConfig:
    """Test configuration defaults and environment overrides."""

    def test_defaults(self):
        config = RewardsConfig()
        assert config.payout_height_offset == FUTURE_BLOCK_HEIGHT_OFFSET
        assert config.batch_size == MAX_PAYMENTS_PER_BATCH
        assert config.native_currency == "EVR"

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ASSETREWARDS_BATCH_SIZE", "10")
        monkeypatch.setenv("ASSETREWARDS_STORAGE_DIR", str(tmp_path))
        monkeypatch.setenv("ASSETREWARDS_RPC_PASSWORD", "secret")
        monkeypatch.setenv("ASSETREWARDS_LOG_LEVEL", "debug")

        config = RewardsConfig.from_env(wallet_name="rewards")

        assert config.batch_size == 10
        assert config.storage_dir == Path(tmp_path)
        assert config.wallet_name == "rewards"
        assert config.log_level == "DEBUG"
        assert config.to_dict()["rpc_password"] == "***"

    def test_invalid_env_int_falls_back(self, monkeypatch):
        monkeypatch.setenv("ASSETREWARDS_PAYOUT_HEIGHT_OFFSET", "soon")
        assert RewardsConfig.from_env().payout_height_offset == FUTURE_BLOCK_HEIGHT_OFFSET

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("ASSETREWARDS_BATCH_SIZE", "10")
        assert RewardsConfig.from_env(batch_size=3).batch_size == 3

    def test_validation(self):
        with pytest.raises(ValueError):
            RewardsConfig(batch_size=0)
        with pytest.raises(ValueError):
            RewardsConfig(payout_height_offset=-1)


class TestErrors:
    """Test error payloads."""

    def test_to_dict(self):
        error = ValidationError("bad amount", {"amount": "0"})
        assert error.to_dict() == {
            "error": "validation_error",
            "message": "bad amount",
            "details": {"amount": "0"},
        }

    def test_hierarchy(self):
        error = NoEligibleHolders("none left")
        assert isinstance(error, RewardsError)
        assert error.code == "no_eligible_holders"
        assert error.to_dict() == {"error": "no_eligible_holders", "message": "none left"}
