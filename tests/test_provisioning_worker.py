import threading
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from conftest import client_error, metric_names
from onboarding.config import Settings
from onboarding.core.exceptions import (
    ProvisioningCancelledError,
    ProvisioningFailedError,
    ProvisioningTimeoutError,
    TemplateValidationError,
)
from onboarding.database.entities import Role, derive_id
from onboarding.modules.provisioning.schemas import (
    DeleteInfraEvent,
    PollInfraEvent,
    ProvisionerEvent,
    VerifyInfraEvent,
)
from onboarding.modules.provisioning.worker import StorageProvisioningWorker, map_stack_status
from onboarding.modules.templates.renderer import render_template_body

STACK_NAME = "app-dev-account-acct-001"
STACK_ID = "arn:aws:cloudformation:us-east-1:123456789012:stack/app-dev-account-acct-001/1"
TABLE_ARN = "arn:aws:dynamodb:us-east-1:123456789012:table/app-dev-acct-001"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def _stack(status, outputs=True):
    stack = {"StackName": STACK_NAME, "StackId": STACK_ID, "StackStatus": status}
    if outputs:
        stack["Outputs"] = [
            {"OutputKey": "TableName", "OutputValue": "app-dev-acct-001"},
            {"OutputKey": "TableArn", "OutputValue": TABLE_ARN},
        ]
    return {"Stacks": [stack]}


def _ssm_puts(ssm):
    return [(c.kwargs["Name"], c.kwargs["Value"], c.kwargs["Overwrite"]) for c in ssm.put_parameter.call_args_list]


@pytest.fixture
def config():
    return Settings(
        environment="dev",
        project_name="app",
        shared_table_name="app-shared",
        stack_poll_interval_seconds=5,
        stack_max_wait_seconds=60,
    )


@pytest.fixture
def cfn():
    client = MagicMock()
    client.create_stack.return_value = {"StackId": STACK_ID}
    client.describe_stacks.side_effect = [_stack("CREATE_IN_PROGRESS", outputs=False), _stack("CREATE_COMPLETE")]
    return client


@pytest.fixture
def ssm():
    return MagicMock()


@pytest.fixture
def dynamodb():
    client = MagicMock()
    client.describe_table.return_value = {"Table": {"TableName": "app-dev-acct-001", "TableStatus": "ACTIVE"}}
    return client


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def worker(cfn, ssm, dynamodb, metrics, notifier, store, config, clock):
    return StorageProvisioningWorker(
        cfn, ssm, metrics=metrics, notifier=notifier, store=store, config=config, dynamodb_client=dynamodb,
        sleep=clock.sleep, clock=clock,
    )


def _event(**overrides):
    payload = {
        "action": "provision_private",
        "accountId": "acct-001",
        "accountName": "Acme Corp",
        "executionId": "exec-1",
        "billingMode": "PAY_PER_REQUEST",
        "enablePointInTimeRecovery": "true",
        "enableDeletionProtection": "true",
    }
    payload.update(overrides)
    return ProvisionerEvent.model_validate(payload)


def test_private_provisioning_records_outputs_once(worker, cfn, ssm, cloudwatch, sns):
    result = worker.run(_event())

    assert result.table_name == "app-dev-acct-001"
    assert result.table_arn == TABLE_ARN
    assert result.stack_id == STACK_ID
    assert result.cloud_type == "private"
    assert _ssm_puts(ssm) == [
        ("/accounts/acct-001/provisioning-status", "creating", True),
        ("/accounts/acct-001/dynamodb/table-name", "app-dev-acct-001", False),
        ("/accounts/acct-001/dynamodb/table-arn", TABLE_ARN, False),
        ("/accounts/acct-001/cloud-type", "private", True),
        ("/accounts/acct-001/provisioning-status", "active", True),
    ]
    assert cloudwatch.put_metric_data.call_count == 1
    assert metric_names(cloudwatch) == ["StorageProvisioningSuccess", "WorkerDuration"]
    assert sns.publish.call_count == 1
    assert "Stack ID:" in sns.publish.call_args.kwargs["Message"]


def test_submitted_body_is_the_canonical_rendering(worker, cfn):
    event = _event()
    worker.run(event)

    submitted = cfn.create_stack.call_args.kwargs
    assert submitted["StackName"] == STACK_NAME
    assert submitted["TemplateBody"] == render_template_body(worker.template_parameters(event))


def test_existing_stack_is_adopted_not_recreated(worker, cfn):
    cfn.create_stack.side_effect = client_error("AlreadyExistsException", "CreateStack", "Stack already exists")
    cfn.describe_stacks.side_effect = [_stack("CREATE_COMPLETE")]

    result = worker.run(_event())

    assert result.stack_id == STACK_ID
    assert cfn.create_stack.call_count == 1
    cfn.delete_stack.assert_not_called()


def test_outputs_already_recorded_count_as_success(worker, ssm):
    def put_parameter(**kwargs):
        if not kwargs["Overwrite"]:
            raise client_error("ParameterAlreadyExists", "PutParameter")
        return {}

    ssm.put_parameter.side_effect = put_parameter

    result = worker.run(_event())
    assert result.status == "active"


def test_failed_stack_surfaces_failure(worker, cfn, ssm, cloudwatch, sns):
    cfn.describe_stacks.side_effect = [
        {"Stacks": [{"StackName": STACK_NAME, "StackStatus": "ROLLBACK_COMPLETE",
                     "StackStatusReason": "Table limit exceeded"}]},
    ]

    with pytest.raises(ProvisioningFailedError) as exc_info:
        worker.run(_event())

    assert exc_info.value.stack_status == "ROLLBACK_COMPLETE"
    assert ("/accounts/acct-001/provisioning-status", "failed", True) in _ssm_puts(ssm)
    assert metric_names(cloudwatch) == ["StorageProvisioningFailed", "WorkerDuration"]
    attributes = sns.publish.call_args.kwargs["MessageAttributes"]
    assert attributes["status"]["StringValue"] == "failed"
    assert "ProvisioningFailedError" in sns.publish.call_args.kwargs["Message"]


def test_invalid_parameters_fail_before_any_external_call(worker, cfn, ssm, cloudwatch, sns):
    with pytest.raises(TemplateValidationError):
        worker.run(_event(billingMode="ON_DEMAND"))

    cfn.create_stack.assert_not_called()
    ssm.put_parameter.assert_not_called()
    cloudwatch.put_metric_data.assert_not_called()
    sns.publish.assert_not_called()


def test_poll_times_out(worker, cfn, config):
    cfn.describe_stacks.side_effect = None
    cfn.describe_stacks.return_value = _stack("CREATE_IN_PROGRESS", outputs=False)

    with pytest.raises(ProvisioningTimeoutError):
        worker.run(_event())

    # One describe per poll interval until the deadline, plus the initial check
    assert cfn.describe_stacks.call_count == config.stack_max_wait_seconds / config.stack_poll_interval_seconds + 1


def test_cancellation_is_checked_before_polling(worker, cfn):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(ProvisioningCancelledError):
        worker.run(_event(), cancel_event=cancel)

    cfn.describe_stacks.assert_not_called()


def test_transient_errors_propagate_with_one_metric(worker, cfn, cloudwatch):
    cfn.create_stack.side_effect = client_error("Throttling", "CreateStack", "Rate exceeded")

    with pytest.raises(ClientError):
        worker.run(_event())

    assert cfn.create_stack.call_count == 1
    assert cloudwatch.put_metric_data.call_count == 1
    assert metric_names(cloudwatch) == ["StorageProvisioningFailed", "WorkerDuration"]


def test_metric_failure_never_masks_result(worker, cloudwatch):
    cloudwatch.put_metric_data.side_effect = RuntimeError("cloudwatch down")

    result = worker.run(_event())
    assert result.status == "active"


def test_register_public_uses_shared_table(worker, cfn, ssm):
    result = worker.run(_event(action="register_public"))

    assert result.cloud_type == "public"
    assert result.table_name == "app-shared"
    cfn.create_stack.assert_not_called()
    assert _ssm_puts(ssm) == [
        ("/accounts/acct-001/cloud-type", "public", True),
        ("/accounts/acct-001/dynamodb/table-name", "app-shared", True),
        ("/accounts/acct-001/provisioning-status", "active", True),
    ]


@pytest.mark.parametrize("stack_status,expected", [
    ("CREATE_COMPLETE", "READY"),
    ("UPDATE_COMPLETE", "READY"),
    ("CREATE_IN_PROGRESS", "CREATING"),
    ("UPDATE_IN_PROGRESS", "CREATING"),
    ("ROLLBACK_IN_PROGRESS", "FAILED"),
    ("ROLLBACK_COMPLETE", "FAILED"),
    ("CREATE_FAILED", "FAILED"),
    ("DELETE_IN_PROGRESS", "DELETING"),
    ("DELETE_COMPLETE", "DELETED"),
    ("DELETE_FAILED", "FAILED"),
])
def test_map_stack_status(stack_status, expected):
    assert map_stack_status(stack_status) == expected


def test_poll_private_ready_records_outputs(worker, cfn, ssm):
    cfn.describe_stacks.side_effect = [_stack("CREATE_COMPLETE")]

    result = worker.poll(PollInfraEvent(account_id="acct-001", execution_id="exec-1", cloud_type="private"))

    assert result.status == "READY"
    assert result.table_arn == TABLE_ARN
    assert ("/accounts/acct-001/dynamodb/table-name", "app-dev-acct-001", False) in _ssm_puts(ssm)


def test_poll_missing_stack_reports_deleted(worker, cfn):
    cfn.describe_stacks.side_effect = client_error(
        "ValidationError", "DescribeStacks", f"Stack with id {STACK_NAME} does not exist",
    )

    result = worker.poll(PollInfraEvent(account_id="acct-001", execution_id="exec-1", cloud_type="private"))
    assert result.status == "DELETED"


def test_poll_public_reads_status_parameter(worker, ssm):
    ssm.get_parameter.return_value = {"Parameter": {"Value": "active"}}

    result = worker.poll(PollInfraEvent(account_id="acct-001", execution_id="exec-1"))

    assert result.status == "READY"
    assert result.to_payload()["accountId"] == "acct-001"


def test_poll_public_missing_parameter_while_deleting(worker, ssm):
    ssm.get_parameter.side_effect = client_error("ParameterNotFound", "GetParameter")

    result = worker.poll(PollInfraEvent(account_id="acct-001", execution_id="exec-1", status="DELETING"))
    assert result.status == "DELETED"


def test_delete_private_removes_stack_and_rbac_items(worker, cfn, store, table, sns):
    store.create_if_absent(Role(id=derive_id("acct-001", "ROLE", "Admin"), account_id="acct-001", name="Admin"))
    cfn.describe_stacks.side_effect = [_stack("CREATE_COMPLETE")]

    result = worker.delete(DeleteInfraEvent(account_id="acct-001", execution_id="exec-9", cloud_type="private"))

    assert result.status == "DELETING"
    assert result.items_deleted == 1
    cfn.delete_stack.assert_called_once_with(StackName=STACK_NAME)
    assert table.items == []
    assert sns.publish.call_args.kwargs["Subject"].startswith("Deprovisioning COMPLETED")


def test_delete_public_tolerates_missing_parameters(worker, ssm, cfn):
    ssm.delete_parameter.side_effect = [
        {}, client_error("ParameterNotFound", "DeleteParameter"), {}, {},
    ]

    result = worker.delete(DeleteInfraEvent(account_id="acct-001", execution_id="exec-9"))

    assert result.status == "DELETED"
    assert ssm.delete_parameter.call_count == 4
    cfn.delete_stack.assert_not_called()


def test_get_status_reads_parameters(worker, ssm):
    values = {
        "/accounts/acct-001/provisioning-status": "active",
        "/accounts/acct-001/cloud-type": "private",
        "/accounts/acct-001/dynamodb/table-name": "app-dev-acct-001",
    }

    def get_parameter(Name):
        if Name not in values:
            raise client_error("ParameterNotFound", "GetParameter")
        return {"Parameter": {"Name": Name, "Value": values[Name]}}

    ssm.get_parameter.side_effect = get_parameter

    status = worker.get_status("acct-001")
    assert status.status == "active"
    assert status.table_arn is None
    assert worker.get_status("acct-404") is None


def _recorded(ssm, values):
    def get_parameter(Name):
        if Name not in values:
            raise client_error("ParameterNotFound", "GetParameter")
        return {"Parameter": {"Name": Name, "Value": values[Name]}}

    ssm.get_parameter.side_effect = get_parameter


def _verify_event(**overrides):
    return VerifyInfraEvent.model_validate(dict({"accountId": "acct-001", "executionId": "exec-1"}, **overrides))


def test_verify_records_verified_at_when_all_checks_pass(worker, ssm, dynamodb, cloudwatch):
    _recorded(ssm, {
        "/accounts/acct-001/provisioning-status": "active",
        "/accounts/acct-001/dynamodb/table-name": "app-dev-acct-001",
    })

    result = worker.verify(_verify_event())

    assert result.verified is True
    assert result.status == "active"
    assert all(check.passed for check in result.checks)
    dynamodb.describe_table.assert_called_once_with(TableName="app-dev-acct-001")
    assert _ssm_puts(ssm) == [
        ("/accounts/acct-001/provisioning-status", "active", True),
        ("/accounts/acct-001/provisioning-verified-at", result.verified_at, True),
    ]
    assert metric_names(cloudwatch) == ["VerificationSuccess", "WorkerDuration"]


def test_verify_marks_partial_when_table_not_active(worker, ssm, dynamodb, cloudwatch):
    _recorded(ssm, {
        "/accounts/acct-001/provisioning-status": "active",
        "/accounts/acct-001/dynamodb/table-name": "app-dev-acct-001",
    })
    dynamodb.describe_table.return_value = {"Table": {"TableStatus": "CREATING"}}

    result = worker.verify(_verify_event())

    assert result.verified is False
    assert result.status == "partial"
    assert [c.name for c in result.checks if not c.passed] == ["DynamoDB Table Active"]
    assert ("/accounts/acct-001/provisioning-status", "partial", True) in _ssm_puts(ssm)
    assert metric_names(cloudwatch) == ["VerificationFailed", "WorkerDuration"]


def test_verify_reports_missing_table_and_parameters_as_failed_checks(worker, ssm, dynamodb):
    _recorded(ssm, {})
    dynamodb.describe_table.side_effect = client_error("ResourceNotFoundException", "DescribeTable")

    result = worker.verify(_verify_event(tableName="app-dev-acct-001"))

    assert result.verified is False
    assert [c.passed for c in result.checks] == [False, False, False]
    assert "ResourceNotFoundException" in result.checks[0].detail


def test_poll_public_treats_partial_as_ready(worker, ssm):
    ssm.get_parameter.return_value = {"Parameter": {"Value": "partial"}}

    result = worker.poll(PollInfraEvent(account_id="acct-001", execution_id="exec-1"))
    assert result.status == "READY"
