from fastapi import APIRouter, Depends

from onboarding.core.dependencies import get_rbac_worker
from onboarding.modules.rbac.schemas import SetupRBACEvent
from onboarding.modules.rbac.worker import RBACBootstrapWorker

router = APIRouter(prefix="/rbac", tags=["rbac"])


@router.post("/setup")
def setup_rbac(
    event: SetupRBACEvent,
    worker: RBACBootstrapWorker = Depends(get_rbac_worker),
):
    """Create the default roles, groups and permissions for an account (idempotent)"""
    return worker.run(event).to_payload()
