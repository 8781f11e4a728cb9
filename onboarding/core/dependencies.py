"""
Core dependencies: builds workers and services from settings for the routes,
the worker entry points and the scheduler.
"""

from fastapi import Depends

from onboarding.config import settings
from onboarding.core.aws import get_client
from onboarding.core.metrics import MetricsEmitter
from onboarding.core.secrets import SecretsService
from onboarding.database.dynamodb_client import get_table
from onboarding.database.entity_store import EntityStore
from onboarding.modules.notifications.service import SnsNotificationService
from onboarding.modules.provisioning.worker import StorageProvisioningWorker
from onboarding.modules.rbac.worker import RBACBootstrapWorker
from onboarding.modules.reconciliation.guard import SingleFlightGuard
from onboarding.modules.reconciliation.identity import IdentityReconciler
from onboarding.modules.reconciliation.sweep import ReconciliationSweep

RECONCILIATION_JOB = "cognito-reconciliation"

# One guard per process, shared by the scheduler loop and the manual trigger
reconciliation_guard = SingleFlightGuard(RECONCILIATION_JOB)

# Secrets cache lives for the whole warm process
secrets_service = SecretsService()


def get_entity_store() -> EntityStore:
    return EntityStore(get_table())


def get_metrics() -> MetricsEmitter:
    return MetricsEmitter()


def get_notifier() -> SnsNotificationService:
    return SnsNotificationService()


def get_secrets_service() -> SecretsService:
    return secrets_service


def get_storage_worker(
    store: EntityStore = Depends(get_entity_store),
    metrics: MetricsEmitter = Depends(get_metrics),
    notifier: SnsNotificationService = Depends(get_notifier),
) -> StorageProvisioningWorker:
    return StorageProvisioningWorker(
        cfn_client=get_client("cloudformation"),
        ssm_client=get_client("ssm"),
        dynamodb_client=get_client("dynamodb"),
        metrics=metrics,
        notifier=notifier,
        store=store,
    )


def get_rbac_worker(
    store: EntityStore = Depends(get_entity_store),
    metrics: MetricsEmitter = Depends(get_metrics),
    notifier: SnsNotificationService = Depends(get_notifier),
) -> RBACBootstrapWorker:
    return RBACBootstrapWorker(store, metrics=metrics, notifier=notifier)


def get_reconciliation_sweep(
    store: EntityStore = Depends(get_entity_store),
    metrics: MetricsEmitter = Depends(get_metrics),
    secrets: SecretsService = Depends(get_secrets_service),
) -> ReconciliationSweep:
    return ReconciliationSweep(
        IdentityReconciler(store, secrets=secrets),
        guard=reconciliation_guard,
        metrics=metrics,
        dry_run=settings.reconciliation_dry_run,
        job_name=RECONCILIATION_JOB,
    )
