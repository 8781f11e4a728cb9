"""
Orchestrator-facing worker entry points.

Each handler takes the step's event payload (camelCase or snake_case keys),
runs one worker invocation and returns a camelCase dict. Failures propagate
so the orchestrator's retry policy applies.
"""
import logging
from typing import Any, Dict

from onboarding.config import settings
from onboarding.core.dependencies import (
    get_entity_store,
    get_metrics,
    get_notifier,
    get_rbac_worker,
    get_storage_worker,
)
from onboarding.modules.provisioning.schemas import (
    DeleteInfraEvent,
    PollInfraEvent,
    ProvisionerEvent,
    VerifyInfraEvent,
)
from onboarding.modules.rbac.schemas import SetupRBACEvent

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def _storage_worker():
    return get_storage_worker(get_entity_store(), get_metrics(), get_notifier())


def provision_storage_handler(event: Dict[str, Any], context=None) -> Dict[str, Any]:
    return _storage_worker().run(ProvisionerEvent.model_validate(event)).to_payload()


def poll_infra_handler(event: Dict[str, Any], context=None) -> Dict[str, Any]:
    return _storage_worker().poll(PollInfraEvent.model_validate(event)).to_payload()


def verify_infra_handler(event: Dict[str, Any], context=None) -> Dict[str, Any]:
    return _storage_worker().verify(VerifyInfraEvent.model_validate(event)).to_payload()


def delete_infra_handler(event: Dict[str, Any], context=None) -> Dict[str, Any]:
    return _storage_worker().delete(DeleteInfraEvent.model_validate(event)).to_payload()


def setup_rbac_handler(event: Dict[str, Any], context=None) -> Dict[str, Any]:
    worker = get_rbac_worker(get_entity_store(), get_metrics(), get_notifier())
    payload = SetupRBACEvent.model_validate(event)
    result = worker.run(payload).to_payload()
    # Pass the incoming step input through for the next orchestrator step
    return {**event, **result}
