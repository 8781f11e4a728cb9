import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from onboarding.config import settings
from onboarding.core.metrics import MetricsEmitter
from onboarding.modules.reconciliation.guard import SingleFlightGuard

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationDetail:
    item_id: str
    label: str
    status: str  # provisioned | updated | skipped | failed
    reason: Optional[str] = None


@dataclass
class ReconciliationReport:
    scanned: int = 0
    missing: int = 0
    provisioned: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    dry_run: bool = False
    details: List[ReconciliationDetail] = field(default_factory=list)

    @property
    def failures(self) -> List[ReconciliationDetail]:
        return [d for d in self.details if d.status == "failed"]

    def record(self, detail: ReconciliationDetail) -> None:
        self.details.append(detail)
        setattr(self, detail.status, getattr(self, detail.status) + 1)


class ReconciliationSweep:
    """
    Runs one reconciler under a single-flight guard.

    A run that finds the guard busy logs a warning and returns None without
    scanning anything. Every run that does start emits exactly one metrics
    report, including runs that end in an unhandled error.
    """

    def __init__(
        self,
        reconciler,
        guard: Optional[SingleFlightGuard] = None,
        metrics: Optional[MetricsEmitter] = None,
        dry_run: Optional[bool] = None,
        job_name: str = "cognito-reconciliation",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.reconciler = reconciler
        self.guard = guard or SingleFlightGuard(job_name)
        self.metrics = metrics or MetricsEmitter()
        self.dry_run = settings.reconciliation_dry_run if dry_run is None else dry_run
        self.job_name = job_name
        self._clock = clock

    def run(self, dry_run: Optional[bool] = None) -> Optional[ReconciliationReport]:
        if not self.guard.try_acquire():
            logger.warning(f"Reconciliation {self.job_name} already in progress, skipping this run")
            return None

        dry_run = self.dry_run if dry_run is None else dry_run
        start = self._clock()
        try:
            logger.info(f"Reconciliation {self.job_name} started (dry_run={dry_run})")
            report = self.reconciler.reconcile(dry_run=dry_run)
            duration_ms = (self._clock() - start) * 1000

            logger.info(
                f"Reconciliation {self.job_name} complete in {duration_ms:.0f}ms: "
                f"scanned={report.scanned}, missing={report.missing}, "
                f"provisioned={report.provisioned}, updated={report.updated}, "
                f"skipped={report.skipped}, failed={report.failed}"
            )
            for failure in report.failures:
                logger.error(f"Reconciliation failure: {failure.label} ({failure.item_id}): {failure.reason}")
        except Exception as e:
            duration_ms = (self._clock() - start) * 1000
            logger.error(f"Reconciliation {self.job_name} failed: {str(e)}", exc_info=True)
            report = ReconciliationReport(failed=1, dry_run=dry_run)
        finally:
            self.guard.release()

        self.metrics.emit_reconciliation_report(self.job_name, report, duration_ms)
        return report
