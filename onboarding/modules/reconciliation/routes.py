from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends

from onboarding.core.dependencies import get_reconciliation_sweep
from onboarding.modules.reconciliation.sweep import ReconciliationSweep

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


@router.post("/run")
def run_reconciliation(
    dry_run: Optional[bool] = None,
    sweep: ReconciliationSweep = Depends(get_reconciliation_sweep),
):
    """
    Run the identity reconciliation sweep now.
    Returns status "skipped" when a run is already in progress.
    """
    report = sweep.run(dry_run=dry_run)
    if report is None:
        return {"status": "skipped", "reason": "Reconciliation already in progress"}
    return {"status": "completed" if report.failed == 0 else "completed_with_failures", **asdict(report)}
