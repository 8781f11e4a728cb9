from contextlib import contextmanager
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from onboarding.core.metrics import MetricsEmitter
from onboarding.database.entity_store import EntityStore
from onboarding.modules.notifications.service import SnsNotificationService

INDEX_KEYS = {
    None: ("PK", "SK"),
    "GSI1": ("GSI1PK", "GSI1SK"),
    "GSI2": ("GSI2PK", "GSI2SK"),
}


def client_error(code: str, operation: str = "Operation", message: str = "error") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def _matches(condition, item: Dict[str, Any]) -> bool:
    expression = condition.get_expression()
    operator = expression["operator"]
    values = expression["values"]
    if operator == "AND":
        return all(_matches(v, item) for v in values)
    if operator == "OR":
        return any(_matches(v, item) for v in values)
    name = values[0].name
    if operator == "attribute_not_exists":
        return name not in item
    if operator == "attribute_exists":
        return name in item
    if operator == "=":
        return item.get(name) == values[1]
    if operator == "begins_with":
        return str(item.get(name, "")).startswith(values[1])
    raise NotImplementedError(f"Condition operator {operator} not supported by FakeTable")


class FakeBatchWriter:
    def __init__(self, table: "FakeTable"):
        self.table = table

    def put_item(self, Item):
        self.table._items[(Item["PK"], Item["SK"])] = dict(Item)
        self.table.writes += 1

    def delete_item(self, Key):
        self.table._items.pop((Key["PK"], Key["SK"]), None)
        self.table.deletes += 1


class FakeTable:
    """In-memory stand-in for a boto3 DynamoDB Table resource with PK/SK and GSI1/GSI2."""

    def __init__(self, page_size: Optional[int] = None):
        self._items: Dict[tuple, Dict[str, Any]] = {}
        self.page_size = page_size
        self.writes = 0
        self.deletes = 0
        self.put_attempts = 0
        self.query_calls = 0
        self.fail_puts_with: Optional[ClientError] = None

    @property
    def items(self) -> List[Dict[str, Any]]:
        return list(self._items.values())

    def put_item(self, Item, ConditionExpression=None):
        self.put_attempts += 1
        if self.fail_puts_with is not None:
            raise self.fail_puts_with
        key = (Item["PK"], Item["SK"])
        if ConditionExpression is not None and not _matches(ConditionExpression, self._items.get(key, {})):
            raise client_error("ConditionalCheckFailedException", "PutItem", "The conditional request failed")
        self._items[key] = dict(Item)
        self.writes += 1
        return {}

    def get_item(self, Key):
        item = self._items.get((Key["PK"], Key["SK"]))
        return {"Item": dict(item)} if item else {}

    def update_item(self, Key, UpdateExpression, ExpressionAttributeNames, ExpressionAttributeValues,
                    ConditionExpression=None):
        key = (Key["PK"], Key["SK"])
        current = self._items.get(key, {})
        if ConditionExpression is not None and not _matches(ConditionExpression, current):
            raise client_error("ConditionalCheckFailedException", "UpdateItem", "The conditional request failed")
        updated = dict(current, **Key)
        for assignment in UpdateExpression[len("SET "):].split(","):
            name_ref, value_ref = [part.strip() for part in assignment.split("=")]
            updated[ExpressionAttributeNames[name_ref]] = ExpressionAttributeValues[value_ref]
        self._items[key] = updated
        self.writes += 1
        return {}

    def query(self, KeyConditionExpression, IndexName=None, FilterExpression=None, ExclusiveStartKey=None):
        self.query_calls += 1
        pk_name, sk_name = INDEX_KEYS[IndexName]
        matched = [
            item for item in self._items.values()
            if pk_name in item and _matches(KeyConditionExpression, item)
        ]
        matched.sort(key=lambda i: (i.get(sk_name, ""), i["PK"], i["SK"]))

        start = 0
        if ExclusiveStartKey:
            start = next(
                n + 1 for n, i in enumerate(matched)
                if (i["PK"], i["SK"]) == (ExclusiveStartKey["PK"], ExclusiveStartKey["SK"])
            )
        page = matched[start:start + self.page_size] if self.page_size else matched[start:]
        result = {
            "Items": [dict(i) for i in page if FilterExpression is None or _matches(FilterExpression, i)],
        }
        if self.page_size and start + self.page_size < len(matched):
            last = page[-1]
            result["LastEvaluatedKey"] = {"PK": last["PK"], "SK": last["SK"]}
        return result

    @contextmanager
    def batch_writer(self, overwrite_by_pkeys=None):
        yield FakeBatchWriter(self)


@pytest.fixture
def table():
    return FakeTable()


@pytest.fixture
def store(table):
    return EntityStore(table)


@pytest.fixture
def cloudwatch():
    return MagicMock()


@pytest.fixture
def metrics(cloudwatch):
    return MetricsEmitter(client=cloudwatch, namespace="app/Workers", enabled=True)


@pytest.fixture
def sns():
    return MagicMock()


@pytest.fixture
def notifier(sns):
    return SnsNotificationService(
        client=sns,
        topic_arn="arn:aws:sns:us-east-1:123456789012:provisioning",
        environment="dev",
        platform_name="License Portal",
    )


def metric_names(cloudwatch) -> List[str]:
    names = []
    for call in cloudwatch.put_metric_data.call_args_list:
        names.extend(m["MetricName"] for m in call.kwargs["MetricData"])
    return names

