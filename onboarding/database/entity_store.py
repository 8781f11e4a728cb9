import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Union

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from onboarding.core.exceptions import aws_error_code
from onboarding.database.entities import (
    INDEX_SCOPE,
    INDEX_TYPE,
    Entity,
    Group,
    GroupRoleLink,
    Permission,
    Role,
    account_scope_key,
    entity_type_key,
    group_pk,
    role_pk,
)

logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


@dataclass(frozen=True)
class Created:
    entity: Entity

    @property
    def created(self) -> bool:
        return True


@dataclass(frozen=True)
class AlreadyExists:
    entity: Entity

    @property
    def created(self) -> bool:
        return False


CreateResult = Union[Created, AlreadyExists]


class EntityStore:
    """Access patterns over the control-plane single table."""

    def __init__(self, table):
        self.table = table

    # -- writes ----------------------------------------------------------

    def create_if_absent(self, entity: Entity) -> CreateResult:
        """Put the entity only if nothing exists at its key."""
        try:
            self.table.put_item(
                Item=entity.to_item(),
                ConditionExpression=Attr("PK").not_exists() & Attr("SK").not_exists(),
            )
        except ClientError as e:
            if aws_error_code(e) == CONDITIONAL_CHECK_FAILED:
                logger.debug(f"Item already exists: {entity.key['PK']}/{entity.key['SK']}")
                return AlreadyExists(entity)
            raise
        return Created(entity)

    def update_attributes(self, key: Dict[str, str], values: Dict[str, Any]) -> None:
        """SET the given attributes on an existing item."""
        if not values:
            return
        names = {f"#a{i}": name for i, name in enumerate(values)}
        expression_values = {f":v{i}": value for i, value in enumerate(values.values())}
        assignments = ", ".join(f"#a{i} = :v{i}" for i in range(len(values)))
        self.table.update_item(
            Key=key,
            UpdateExpression=f"SET {assignments}",
            ConditionExpression=Attr("PK").exists(),
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=expression_values,
        )

    def delete_account_items(self, account_id: str) -> int:
        """Batch-delete every role, group and user item of an account, with their permissions and links."""
        keys: List[Dict[str, str]] = []
        for collection in ("roles", "groups", "users"):
            for item in self.query_scope(account_id, collection):
                for owned in self.list_partition(item["PK"]):
                    keys.append({"PK": owned["PK"], "SK": owned["SK"]})

        with self.table.batch_writer(overwrite_by_pkeys=["PK", "SK"]) as batch:
            for key in keys:
                batch.delete_item(Key=key)

        logger.info(f"Deleted {len(keys)} items for account {account_id}")
        return len(keys)

    # -- reads -----------------------------------------------------------

    def get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        result = self.table.get_item(Key={"PK": pk, "SK": sk})
        return result.get("Item")

    def list_partition(self, pk: str) -> List[Dict[str, Any]]:
        return list(self._paginate(KeyConditionExpression=Key("PK").eq(pk)))

    def query_type(self, kind: str) -> Iterator[Dict[str, Any]]:
        """All items of an entity kind (GSI1 type scan)."""
        return self._paginate(
            IndexName=INDEX_TYPE,
            KeyConditionExpression=Key("GSI1PK").eq(entity_type_key(kind)),
        )

    def query_scope(self, account_id: str, collection: str) -> Iterator[Dict[str, Any]]:
        """Items of one collection within an account (GSI2 scope lookup)."""
        return self._paginate(
            IndexName=INDEX_SCOPE,
            KeyConditionExpression=Key("GSI2PK").eq(account_scope_key(account_id, collection)),
        )

    def find_by_name(self, account_id: str, collection: str, name: str) -> Optional[Dict[str, Any]]:
        """First item in the account's collection with an exact name match."""
        items = self._paginate(
            IndexName=INDEX_SCOPE,
            KeyConditionExpression=Key("GSI2PK").eq(account_scope_key(account_id, collection)),
            FilterExpression=Attr("name").eq(name),
        )
        return next(items, None)

    def find_role_by_name(self, account_id: str, name: str) -> Optional[Role]:
        item = self.find_by_name(account_id, "roles", name)
        return Role.from_item(item) if item else None

    def find_group_by_name(self, account_id: str, name: str) -> Optional[Group]:
        item = self.find_by_name(account_id, "groups", name)
        return Group.from_item(item) if item else None

    def list_role_permissions(self, role_id: str) -> List[Permission]:
        items = self._paginate(
            IndexName=INDEX_TYPE,
            KeyConditionExpression=Key("GSI1PK").eq(f"{role_pk(role_id)}#PERMISSIONS"),
        )
        return [Permission.from_item(item) for item in items]

    def list_group_roles(self, group_id: str) -> List[GroupRoleLink]:
        items = self._paginate(
            KeyConditionExpression=Key("PK").eq(group_pk(group_id)) & Key("SK").begins_with("ROLE#"),
        )
        return [GroupRoleLink.from_item(item) for item in items]

    def _paginate(self, **query) -> Iterator[Dict[str, Any]]:
        while True:
            result = self.table.query(**query)
            for item in result.get("Items", []):
                yield item
            last_key = result.get("LastEvaluatedKey")
            if not last_key:
                return
            query["ExclusiveStartKey"] = last_key
