import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from botocore.exceptions import ClientError

from onboarding.config import Settings, settings as default_settings
from onboarding.core.exceptions import (
    OnboardingError,
    ProvisioningCancelledError,
    ProvisioningFailedError,
    ProvisioningTimeoutError,
    aws_error_code,
    error_code_for,
)
from onboarding.core.metrics import MetricsEmitter
from onboarding.database.entities import TenantParameter, utc_now
from onboarding.database.entity_store import EntityStore
from onboarding.modules.notifications.schemas import LifecycleEvent
from onboarding.modules.notifications.service import SnsNotificationService
from onboarding.modules.provisioning.schemas import (
    DeleteInfraEvent,
    DeleteInfraResult,
    PollInfraEvent,
    PollInfraResult,
    ProvisionerEvent,
    ProvisioningResult,
    ProvisioningStatusResponse,
    VerificationCheck,
    VerifyInfraEvent,
    VerifyInfraResult,
)
from onboarding.modules.templates.renderer import parse_parameters, render_template_body
from onboarding.modules.templates.schemas import TemplateParameters

logger = logging.getLogger(__name__)

PARAM_CLOUD_TYPE = "cloud-type"
PARAM_TABLE_NAME = "dynamodb/table-name"
PARAM_TABLE_ARN = "dynamodb/table-arn"
PARAM_STATUS = "provisioning-status"
PARAM_VERIFIED_AT = "provisioning-verified-at"

READY_STATES = {"CREATE_COMPLETE", "UPDATE_COMPLETE", "UPDATE_ROLLBACK_COMPLETE"}

# provisioning-status parameter value -> infra status
_SSM_STATUS_MAP = {
    "active": "READY",
    "creating": "CREATING",
    "deleting": "DELETING",
    "deleted": "DELETED",
    "failed": "FAILED",
    "partial": "READY",
}


def map_stack_status(stack_status: str) -> str:
    """Collapse a CloudFormation stack status to READY/CREATING/DELETING/DELETED/FAILED."""
    if stack_status in READY_STATES:
        return "READY"
    if stack_status == "DELETE_COMPLETE":
        return "DELETED"
    # ROLLBACK_* after a create means the create already failed
    if "FAILED" in stack_status or stack_status in ("ROLLBACK_IN_PROGRESS", "ROLLBACK_COMPLETE"):
        return "FAILED"
    return "DELETING" if "DELETE" in stack_status else "CREATING"


def _stack_outputs(stack: Dict[str, Any]) -> Dict[str, str]:
    return {o["OutputKey"]: o["OutputValue"] for o in stack.get("Outputs", []) if "OutputValue" in o}


def _is_missing_stack(error: ClientError) -> bool:
    return aws_error_code(error) == "ValidationError" and "does not exist" in str(error)


class StorageProvisioningWorker:
    """
    Provisions dedicated (private) or shared (public) DynamoDB storage for an account.

    Submits the rendered description to CloudFormation, polls it to a terminal
    state and records the table outputs as discoverable parameters. A stack
    that already exists for the account is treated as success, never
    recreated. Retries beyond the SDK's own are left to the orchestrator.
    """

    WORKER_NAME = "storage-provisioner"
    METRIC_PREFIX = "StorageProvisioning"

    def __init__(
        self,
        cfn_client,
        ssm_client,
        metrics: Optional[MetricsEmitter] = None,
        notifier: Optional[SnsNotificationService] = None,
        store: Optional[EntityStore] = None,
        config: Optional[Settings] = None,
        dynamodb_client=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cfn = cfn_client
        self.ssm = ssm_client
        self.metrics = metrics or MetricsEmitter()
        self.notifier = notifier or SnsNotificationService()
        self.store = store
        self.config = config or default_settings
        self._dynamodb = dynamodb_client
        self._sleep = sleep
        self._clock = clock

    @property
    def dynamodb(self):
        if self._dynamodb is None:
            from onboarding.core.aws import get_client
            self._dynamodb = get_client("dynamodb")
        return self._dynamodb

    # -- provisioning ----------------------------------------------------

    def template_parameters(self, event: ProvisionerEvent) -> TemplateParameters:
        return parse_parameters({
            "accountId": event.account_id,
            "accountName": event.account_name,
            "environment": self.config.environment,
            "projectName": self.config.project_name,
            "billingMode": event.billing_mode,
            "readCapacity": event.read_capacity,
            "writeCapacity": event.write_capacity,
            "enablePointInTimeRecovery": event.enable_point_in_time_recovery,
            "enableDeletionProtection": event.enable_deletion_protection,
        })

    def run(self, event: ProvisionerEvent, cancel_event: Optional[threading.Event] = None) -> ProvisioningResult:
        """
        Execute one provisioning invocation.
        Invalid parameters raise TemplateValidationError before any AWS call is made.
        """
        params = self.template_parameters(event) if event.action == "provision_private" else None

        start = self._clock()
        logger.info(f"[{event.execution_id}] Action: {event.action} for account {event.account_id}")
        try:
            if params is None:
                result = self._register_public(event)
            else:
                result = self.provision(params, event.execution_id, cancel_event)
        except Exception as e:
            duration_ms = (self._clock() - start) * 1000
            self.metrics.emit_worker_run(self.WORKER_NAME, self.METRIC_PREFIX, False, duration_ms)
            logger.error(f"[{event.execution_id}] Storage provisioning failed for {event.account_id}: {str(e)}")
            self.notifier.notify(LifecycleEvent(
                account_id=event.account_id,
                account_name=event.account_name,
                cloud_type=event.cloud_type,
                status="failed",
                duration_ms=duration_ms,
                error_code=error_code_for(e),
                message=str(e),
            ))
            raise

        duration_ms = (self._clock() - start) * 1000
        self.metrics.emit_worker_run(self.WORKER_NAME, self.METRIC_PREFIX, True, duration_ms)
        logger.info(
            f"[{event.execution_id}] Account {event.account_id} storage ready: "
            f"{result.table_name} ({duration_ms:.0f}ms)"
        )
        self.notifier.notify(LifecycleEvent(
            account_id=event.account_id,
            account_name=event.account_name,
            cloud_type=event.cloud_type,
            status="completed",
            duration_ms=duration_ms,
            stack_id=result.stack_id,
            resource_count=3 if result.cloud_type == "private" else None,
        ))
        return result

    def provision(
        self,
        params: TemplateParameters,
        execution_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> ProvisioningResult:
        """Submit the rendered description, wait for completion and record its outputs."""
        template_body = render_template_body(params)
        stack_name = params.stack_name

        self._put_parameter(params.account_id, PARAM_STATUS, "creating", overwrite=True)
        try:
            stack_id = self._create_stack(params, template_body, execution_id)
            stack = self.wait_for_stack(stack_name, cancel_event)

            outputs = _stack_outputs(stack)
            table_name = outputs.get("TableName")
            table_arn = outputs.get("TableArn")
            if not table_name:
                raise OnboardingError(f"Stack {stack_name} created but TableName output not found")

            self.record_outputs(params.account_id, table_name, table_arn)
            self._put_parameter(params.account_id, PARAM_CLOUD_TYPE, "private", overwrite=True)
            self._put_parameter(params.account_id, PARAM_STATUS, "active", overwrite=True)
        except Exception:
            self._mark_failed(params.account_id, execution_id)
            raise

        return ProvisioningResult(
            account_id=params.account_id,
            execution_id=execution_id,
            cloud_type="private",
            table_name=table_name,
            table_arn=table_arn,
            stack_name=stack_name,
            stack_id=stack_id or stack.get("StackId"),
        )

    def _create_stack(self, params: TemplateParameters, template_body: str, execution_id: str) -> Optional[str]:
        try:
            response = self.cfn.create_stack(
                StackName=params.stack_name,
                TemplateBody=template_body,
                Tags=[
                    {"Key": "AccountId", "Value": params.account_id},
                    {"Key": "AccountName", "Value": params.account_name},
                    {"Key": "Environment", "Value": params.environment},
                    {"Key": "CloudType", "Value": "private"},
                    {"Key": "ManagedBy", "Value": "StorageProvisioningWorker"},
                ],
                OnFailure="ROLLBACK",
            )
        except ClientError as e:
            if aws_error_code(e) != "AlreadyExistsException":
                raise
            # A previous attempt already submitted this stack; adopt it
            logger.info(f"[{execution_id}] Stack {params.stack_name} already exists, resuming")
            return None

        stack_id = response.get("StackId")
        logger.info(f"[{execution_id}] CloudFormation stack created: {stack_id}")
        return stack_id

    def describe_stack(self, stack_name: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.cfn.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if _is_missing_stack(e):
                return None
            raise
        stacks = response.get("Stacks") or []
        return stacks[0] if stacks else None

    def wait_for_stack(self, stack_name: str, cancel_event: Optional[threading.Event] = None) -> Dict[str, Any]:
        """Poll until the stack is ready. Cancellation is checked once per iteration."""
        deadline = self._clock() + self.config.stack_max_wait_seconds
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise ProvisioningCancelledError(stack_name)

            stack = self.describe_stack(stack_name)
            if stack is None:
                raise ProvisioningFailedError(stack_name, "DELETE_COMPLETE", "Stack does not exist")

            stack_status = stack.get("StackStatus", "UNKNOWN")
            state = map_stack_status(stack_status)
            logger.debug(f"Stack {stack_name} status: {stack_status}")
            if state == "READY":
                return stack
            if state in ("FAILED", "DELETED", "DELETING"):
                raise ProvisioningFailedError(stack_name, stack_status, stack.get("StackStatusReason"))

            if self._clock() >= deadline:
                raise ProvisioningTimeoutError(stack_name, self.config.stack_max_wait_seconds)
            self._sleep(self.config.stack_poll_interval_seconds)

    def record_outputs(self, account_id: str, table_name: str, table_arn: Optional[str]) -> None:
        """Write the table outputs once; existing values are never overwritten."""
        outputs = {PARAM_TABLE_NAME: table_name}
        if table_arn:
            outputs[PARAM_TABLE_ARN] = table_arn
        for key, value in outputs.items():
            self._put_parameter(account_id, key, value, overwrite=False)

    def _register_public(self, event: ProvisionerEvent) -> ProvisioningResult:
        shared_table = self.config.get_shared_table_name()
        for key, value in (
            (PARAM_CLOUD_TYPE, "public"),
            (PARAM_TABLE_NAME, shared_table),
            (PARAM_STATUS, "active"),
        ):
            self._put_parameter(event.account_id, key, value, overwrite=True)

        logger.info(f"Public account {event.account_id} registered in shared table {shared_table}")
        return ProvisioningResult(
            account_id=event.account_id,
            execution_id=event.execution_id,
            cloud_type="public",
            table_name=shared_table,
        )

    def _put_parameter(self, account_id: str, key: str, value: str, overwrite: bool) -> bool:
        """Returns False when a non-overwritable parameter already exists."""
        parameter = TenantParameter(
            account_id=account_id,
            key=key,
            value=value,
            description=f"Account {account_id} {key}",
        )
        try:
            self.ssm.put_parameter(**parameter.to_put_request(overwrite=overwrite))
        except ClientError as e:
            if not overwrite and aws_error_code(e) == "ParameterAlreadyExists":
                logger.debug(f"Parameter {parameter.name} already recorded")
                return False
            raise
        return True

    def _mark_failed(self, account_id: str, execution_id: str) -> None:
        try:
            self._put_parameter(account_id, PARAM_STATUS, "failed", overwrite=True)
        except Exception as e:
            logger.error(f"[{execution_id}] Failed to set provisioning status to failed: {str(e)}")

    # -- status ----------------------------------------------------------

    def _get_parameter(self, account_id: str, key: str) -> Optional[str]:
        try:
            response = self.ssm.get_parameter(Name=TenantParameter.name_for(account_id, key))
        except ClientError as e:
            if aws_error_code(e) == "ParameterNotFound":
                return None
            raise
        return response["Parameter"]["Value"]

    def get_status(self, account_id: str) -> Optional[ProvisioningStatusResponse]:
        status = self._get_parameter(account_id, PARAM_STATUS)
        if status is None:
            return None
        return ProvisioningStatusResponse(
            account_id=account_id,
            status=status,
            cloud_type=self._get_parameter(account_id, PARAM_CLOUD_TYPE),
            table_name=self._get_parameter(account_id, PARAM_TABLE_NAME),
            table_arn=self._get_parameter(account_id, PARAM_TABLE_ARN),
        )

    def poll(self, event: PollInfraEvent) -> PollInfraResult:
        """Non-blocking status check used by the orchestrator's wait loop."""
        start = self._clock()
        logger.info(f"[{event.execution_id}] Polling infra status for account {event.account_id}")
        try:
            if event.cloud_type == "private":
                result = self._poll_stack(event)
            else:
                result = self._poll_public(event)
        except Exception as e:
            self.metrics.emit_worker_run("poll-infra", "PollInfra", False, (self._clock() - start) * 1000)
            logger.error(f"[{event.execution_id}] Poll failed: {str(e)}")
            raise

        self.metrics.emit_worker_run("poll-infra", "PollInfra", True, (self._clock() - start) * 1000)
        return result.model_copy(update={
            "account_name": event.account_name,
            "cloud_type": event.cloud_type,
        })

    def _poll_public(self, event: PollInfraEvent) -> PollInfraResult:
        ssm_status = self._get_parameter(event.account_id, PARAM_STATUS)
        if ssm_status is None:
            status = "DELETED" if event.status == "DELETING" else "CREATING"
            detail = "SSM parameter not present"
        else:
            status = _SSM_STATUS_MAP.get(ssm_status, "CREATING")
            detail = f"SSM provisioning-status: {ssm_status}"

        logger.info(f"[{event.execution_id}] Public account status: {ssm_status} -> {status}")
        return PollInfraResult(
            account_id=event.account_id,
            execution_id=event.execution_id,
            status=status,
            detail=detail,
        )

    def _poll_stack(self, event: PollInfraEvent) -> PollInfraResult:
        stack_name = event.stack_name or self.stack_name_for(event.account_id)
        stack = self.describe_stack(stack_name)
        if stack is None:
            return PollInfraResult(
                account_id=event.account_id,
                execution_id=event.execution_id,
                stack_name=stack_name,
                status="DELETED",
                detail="Stack does not exist",
            )

        stack_status = stack.get("StackStatus", "UNKNOWN")
        state = map_stack_status(stack_status)
        logger.info(f"[{event.execution_id}] Stack {stack_name} status: {stack_status}")

        result = PollInfraResult(
            account_id=event.account_id,
            execution_id=event.execution_id,
            stack_name=stack_name,
            status=state,
            detail=f"Stack status: {stack_status}",
        )
        if state == "READY":
            outputs = _stack_outputs(stack)
            table_name = outputs.get("TableName")
            table_arn = outputs.get("TableArn")
            if table_name:
                self.record_outputs(event.account_id, table_name, table_arn)
                self._put_parameter(event.account_id, PARAM_STATUS, "active", overwrite=True)
            result = result.model_copy(update={"table_name": table_name, "table_arn": table_arn})
        elif state == "FAILED":
            reason = stack.get("StackStatusReason") or "Unknown failure"
            result = result.model_copy(update={"detail": f"Stack failed: {stack_status} ({reason})"})
        return result

    def stack_name_for(self, account_id: str) -> str:
        return f"{self.config.project_name}-{self.config.environment}-account-{account_id}"

    # -- verification ----------------------------------------------------

    def verify(self, event: VerifyInfraEvent) -> VerifyInfraResult:
        """
        Final pipeline step: confirm the account's table is ACTIVE and its
        parameters are recorded, then write provisioning-status (active or
        partial) and provisioning-verified-at.
        """
        start = self._clock()
        logger.info(f"[{event.execution_id}] Verifying provisioning for account {event.account_id}")
        try:
            recorded_table = self._get_parameter(event.account_id, PARAM_TABLE_NAME)
            table_name = event.table_name or recorded_table
            ssm_status = self._get_parameter(event.account_id, PARAM_STATUS)

            checks = [
                self._check_table(table_name),
                VerificationCheck(
                    name="SSM Provisioning Status",
                    passed=ssm_status == "active",
                    detail=f"SSM status: {ssm_status}",
                ),
                VerificationCheck(
                    name="SSM Table Name Parameter",
                    passed=bool(recorded_table),
                    detail=f"SSM table name: {recorded_table}",
                ),
            ]
            verified = all(c.passed for c in checks)
            verified_at = utc_now()

            self._put_parameter(event.account_id, PARAM_STATUS, "active" if verified else "partial", overwrite=True)
            self._put_parameter(event.account_id, PARAM_VERIFIED_AT, verified_at, overwrite=True)
        except Exception as e:
            self.metrics.emit_worker_run("provisioning-verifier", "Verification", False, (self._clock() - start) * 1000)
            logger.error(f"[{event.execution_id}] Verification failed for {event.account_id}: {str(e)}")
            raise

        self.metrics.emit_worker_run("provisioning-verifier", "Verification", verified, (self._clock() - start) * 1000)
        for check in checks:
            if not check.passed:
                logger.warning(f"[{event.execution_id}] Check failed: {check.name} ({check.detail})")
        logger.info(f"[{event.execution_id}] Verification {'PASSED' if verified else 'PARTIAL'} for {event.account_id}")

        return VerifyInfraResult(
            account_id=event.account_id,
            execution_id=event.execution_id,
            verified=verified,
            status="active" if verified else "partial",
            table_name=table_name,
            verified_at=verified_at,
            checks=checks,
        )

    def _check_table(self, table_name: Optional[str]) -> VerificationCheck:
        name = "DynamoDB Table Active"
        if not table_name:
            return VerificationCheck(name=name, passed=False, detail="No table name recorded")
        try:
            response = self.dynamodb.describe_table(TableName=table_name)
        except ClientError as e:
            return VerificationCheck(name=name, passed=False, detail=f"Table check failed: {aws_error_code(e)}")
        table_status = response["Table"].get("TableStatus")
        return VerificationCheck(
            name=name,
            passed=table_status == "ACTIVE",
            detail=f"Table {table_name} status: {table_status}",
        )

    # -- teardown --------------------------------------------------------

    def delete(self, event: DeleteInfraEvent) -> DeleteInfraResult:
        """
        Tear down an account: remove its stack (the table itself is retained),
        its mutable parameters and every RBAC item it owns in the control-plane table.
        """
        action = event.resolved_action
        cloud_type = "private" if action == "delete_private" else "public"
        start = self._clock()
        logger.info(f"[{event.execution_id}] Action: {action} for account {event.account_id}")

        try:
            if action == "delete_private":
                result = self._delete_private(event)
            else:
                result = self._delete_public(event)
            if self.store is not None:
                deleted = self.store.delete_account_items(event.account_id)
                result = result.model_copy(update={"items_deleted": deleted})
        except Exception as e:
            duration_ms = (self._clock() - start) * 1000
            self.metrics.emit_worker_run("delete-infra", "DeleteInfra", False, duration_ms)
            logger.error(f"[{event.execution_id}] Teardown failed for {event.account_id}: {str(e)}")
            self.notifier.notify_deprovisioning(LifecycleEvent(
                account_id=event.account_id,
                account_name=event.account_name,
                cloud_type=cloud_type,
                status="failed",
                duration_ms=duration_ms,
                error_code=error_code_for(e),
                message=str(e),
            ))
            raise

        duration_ms = (self._clock() - start) * 1000
        self.metrics.emit_worker_run("delete-infra", "DeleteInfra", True, duration_ms)
        self.notifier.notify_deprovisioning(LifecycleEvent(
            account_id=event.account_id,
            account_name=event.account_name,
            cloud_type=cloud_type,
            status="completed",
            duration_ms=duration_ms,
        ))
        return result

    def _delete_parameters(self, account_id: str, keys) -> None:
        for key in keys:
            name = TenantParameter.name_for(account_id, key)
            try:
                self.ssm.delete_parameter(Name=name)
                logger.info(f"Deleted SSM parameter: {name}")
            except ClientError as e:
                if aws_error_code(e) != "ParameterNotFound":
                    raise
                logger.debug(f"SSM parameter already absent: {name}")

    def _delete_public(self, event: DeleteInfraEvent) -> DeleteInfraResult:
        self._delete_parameters(
            event.account_id,
            [PARAM_CLOUD_TYPE, PARAM_TABLE_NAME, PARAM_STATUS, PARAM_VERIFIED_AT],
        )
        return DeleteInfraResult(account_id=event.account_id, execution_id=event.execution_id, status="DELETED")

    def _delete_private(self, event: DeleteInfraEvent) -> DeleteInfraResult:
        stack_name = self.stack_name_for(event.account_id)
        self._put_parameter(event.account_id, PARAM_STATUS, "deleting", overwrite=True)

        if self.describe_stack(stack_name) is None:
            logger.info(f"[{event.execution_id}] Stack {stack_name} does not exist, nothing to delete")
            self._delete_parameters(event.account_id, [PARAM_STATUS, PARAM_VERIFIED_AT])
            return DeleteInfraResult(
                account_id=event.account_id,
                execution_id=event.execution_id,
                status="DELETED",
                stack_name=stack_name,
            )

        self.cfn.delete_stack(StackName=stack_name)
        logger.info(f"[{event.execution_id}] Stack deletion initiated: {stack_name}")
        # Completion is observed through poll()
        return DeleteInfraResult(
            account_id=event.account_id,
            execution_id=event.execution_id,
            status="DELETING",
            stack_name=stack_name,
        )

