"""
assetrewards/metrics.py

Prometheus metrics collection for assetrewards.

Counts reward lifecycle events (scheduling, computation, settlement
batches) and exposes them in the Prometheus text format.
"""

import time
import logging
from typing import Any, Dict

logger = logging.getLogger("assetrewards.metrics")


class RewardsMetrics:
    """
    Prometheus metrics collector for the reward pipeline.

    Usage:
        metrics = RewardsMetrics()
        service = RewardsService(..., metrics=metrics)

        # Get metrics in Prometheus format
        prometheus_output = metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "assetrewards_requests_scheduled_total": {
            "type": "counter",
            "help": "Total number of reward requests scheduled",
        },
        "assetrewards_requests_cancelled_total": {
            "type": "counter",
            "help": "Total number of reward requests cancelled",
        },
        "assetrewards_payouts_computed_total": {
            "type": "counter",
            "help": "Total number of payout records computed",
        },
        "assetrewards_allocation_failures_total": {
            "type": "counter",
            "help": "Total number of rewards that could not be allocated",
        },
        "assetrewards_batches_succeeded_total": {
            "type": "counter",
            "help": "Total number of settlement batches that succeeded",
        },
        "assetrewards_batches_failed_total": {
            "type": "counter",
            "help": "Total number of settlement batches that failed",
        },
        "assetrewards_payments_completed_total": {
            "type": "counter",
            "help": "Total number of payments marked completed",
        },
        "assetrewards_invalid_addresses_total": {
            "type": "counter",
            "help": "Total number of payments skipped for an invalid address",
        },
        "assetrewards_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
    }

    def __init__(self):
        self._start_time = time.time()
        self.reset_counters()

    def record_scheduled(self) -> None:
        self._counters["assetrewards_requests_scheduled_total"] += 1

    def record_cancelled(self) -> None:
        self._counters["assetrewards_requests_cancelled_total"] += 1

    def record_computed(self) -> None:
        self._counters["assetrewards_payouts_computed_total"] += 1

    def record_allocation_failure(self, reason: str) -> None:
        self._counters["assetrewards_allocation_failures_total"] += 1
        self._failure_reasons[reason] = self._failure_reasons.get(reason, 0) + 1

    def record_batch(self, success: bool, invalid: int = 0) -> None:
        """Record one settlement batch outcome."""
        if success:
            self._counters["assetrewards_batches_succeeded_total"] += 1
        else:
            self._counters["assetrewards_batches_failed_total"] += 1
        self._counters["assetrewards_invalid_addresses_total"] += invalid

    def record_completed(self, count: int) -> None:
        """Record payments durably marked completed, sent or skipped."""
        self._counters["assetrewards_payments_completed_total"] += count

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        def add_metric(name: str, value: float, labels: Dict[str, str] = None):
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")
            if labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
                lines.append(f"{name}{{{label_str}}} {value}")
            else:
                lines.append(f"{name} {value}")

        for name, value in self._counters.items():
            if name == "assetrewards_allocation_failures_total" and self._failure_reasons:
                metric_def = self.METRICS[name]
                lines.append(f"# HELP {name} {metric_def['help']}")
                lines.append(f"# TYPE {name} counter")
                for reason, count in sorted(self._failure_reasons.items()):
                    lines.append(f'{name}{{reason="{reason}"}} {count}')
                continue
            add_metric(name, value)

        add_metric("assetrewards_uptime_seconds", time.time() - self._start_time)

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON output).

        Returns:
            Dictionary of counter values without the metric prefix
        """
        stats: Dict[str, Any] = {
            name[len("assetrewards_"):]: value for name, value in self._counters.items()
        }
        stats["allocation_failure_reasons"] = dict(self._failure_reasons)
        stats["uptime_seconds"] = time.time() - self._start_time
        return stats

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        self._counters: Dict[str, int] = {
            name: 0 for name, definition in self.METRICS.items()
            if name != "assetrewards_uptime_seconds"
        }
        self._failure_reasons: Dict[str, int] = {}
