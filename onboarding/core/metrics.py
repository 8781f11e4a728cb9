"""
CloudWatch metric emission for workers and scheduled jobs.

All emissions are fire-and-forget: failures are logged and never raised, so a
metrics outage can not mask or replace a worker's primary result.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from onboarding.config import settings

logger = logging.getLogger(__name__)

# CloudWatch accepts at most 1000 data points per PutMetricData call
MAX_METRICS_PER_CALL = 1000


class MetricsEmitter:
    def __init__(self, client=None, namespace: Optional[str] = None, enabled: Optional[bool] = None):
        self.enabled = settings.cloudwatch_metrics_enabled if enabled is None else enabled
        self.namespace = namespace or settings.metrics_namespace
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from onboarding.core.aws import get_client
            self._client = get_client("cloudwatch")
        return self._client

    def put_metrics(self, metrics: List[Dict[str, Any]]) -> None:
        """
        Emit metric data points.
        Each metric: {"name", "value", "unit" (default Count), "dimensions" {name: value}}
        """
        if not self.enabled or not metrics:
            return

        timestamp = datetime.now(timezone.utc)
        metric_data = [
            {
                "MetricName": m["name"],
                "Value": m["value"],
                "Unit": m.get("unit", "Count"),
                "Timestamp": timestamp,
                "Dimensions": [
                    {"Name": name, "Value": value}
                    for name, value in (m.get("dimensions") or {}).items()
                ],
            }
            for m in metrics
        ]

        for start in range(0, len(metric_data), MAX_METRICS_PER_CALL):
            batch = metric_data[start:start + MAX_METRICS_PER_CALL]
            try:
                self.client.put_metric_data(Namespace=self.namespace, MetricData=batch)
                logger.debug(f"Emitted {len(batch)} metric(s) to {self.namespace}")
            except Exception as e:
                logger.error(f"Failed to emit CloudWatch metrics: {str(e)}")

    def emit_worker_run(self, worker: str, metric_prefix: str, success: bool, duration_ms: float) -> None:
        """One outcome counter (<prefix>Success / <prefix>Failed) plus the run duration."""
        dimensions = {"Worker": worker}
        outcome = "Success" if success else "Failed"
        self.put_metrics([
            {"name": f"{metric_prefix}{outcome}", "value": 1, "dimensions": dimensions},
            {"name": "WorkerDuration", "value": duration_ms, "unit": "Milliseconds", "dimensions": dimensions},
        ])

    def emit_reconciliation_report(self, job_name: str, report, duration_ms: float) -> None:
        dimensions = {"JobName": job_name}
        metrics = [
            {"name": "ReconciliationRunCount", "value": 1, "dimensions": dimensions},
            {"name": "ReconciliationDuration", "value": duration_ms, "unit": "Milliseconds", "dimensions": dimensions},
            {"name": "ReconciliationScanned", "value": report.scanned, "dimensions": dimensions},
            {"name": "ReconciliationProvisioned", "value": report.provisioned, "dimensions": dimensions},
            {"name": "ReconciliationUpdated", "value": report.updated, "dimensions": dimensions},
            {"name": "ReconciliationSkipped", "value": report.skipped, "dimensions": dimensions},
            {"name": "ReconciliationFailed", "value": report.failed, "dimensions": dimensions},
            {"name": "ReconciliationSuccess", "value": 1 if report.failed == 0 else 0, "dimensions": dimensions},
        ]
        if report.dry_run:
            metrics.append({"name": "ReconciliationDryRun", "value": 1, "dimensions": dimensions})

        self.put_metrics(metrics)
        logger.info(
            f"Reconciliation metrics emitted: provisioned={report.provisioned}, "
            f"failed={report.failed}, duration={duration_ms:.0f}ms"
        )
