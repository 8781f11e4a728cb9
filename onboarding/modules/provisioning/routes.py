import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from onboarding.core.dependencies import get_storage_worker
from onboarding.modules.provisioning.schemas import (
    DeleteInfraEvent,
    PollInfraEvent,
    ProvisionerEvent,
    VerifyInfraEvent,
)
from onboarding.modules.provisioning.worker import StorageProvisioningWorker
from onboarding.modules.templates.renderer import render_template

router = APIRouter(prefix="/provisioning", tags=["provisioning"])


@router.post("/render")
async def render(parameters: Dict[str, Any] = Body(...)):
    """Render the infrastructure description for a private account. No AWS call is made."""
    return render_template(parameters)


@router.post("/storage")
def provision_storage(
    event: ProvisionerEvent,
    worker: StorageProvisioningWorker = Depends(get_storage_worker),
):
    """Provision (private) or register (public) storage and wait for completion"""
    return worker.run(event).to_payload()


@router.post("/poll")
def poll_infra(
    event: PollInfraEvent,
    worker: StorageProvisioningWorker = Depends(get_storage_worker),
):
    return worker.poll(event).to_payload()


@router.post("/verify")
def verify_infra(
    event: VerifyInfraEvent,
    worker: StorageProvisioningWorker = Depends(get_storage_worker),
):
    return worker.verify(event).to_payload()


@router.get("/{account_id}/status")
def get_status(
    account_id: str,
    worker: StorageProvisioningWorker = Depends(get_storage_worker),
):
    status = worker.get_status(account_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"No provisioning record for account {account_id}")
    return status.to_payload()


@router.delete("/{account_id}")
def delete_infra(
    account_id: str,
    cloud_type: str = "public",
    execution_id: Optional[str] = None,
    worker: StorageProvisioningWorker = Depends(get_storage_worker),
):
    """Tear down the account's storage, parameters and RBAC items"""
    event = DeleteInfraEvent(
        account_id=account_id,
        execution_id=execution_id or str(uuid.uuid4()),
        cloud_type=cloud_type,
    )
    return worker.delete(event).to_payload()
