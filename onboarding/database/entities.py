"""
Single-table entity variants.

Every entity kind stored in the control-plane table has one model here with an
explicit mapping to and from the raw DynamoDB item. Key naming conventions
(PK/SK/GSI1/GSI2 values) are only built in this module.

Item layout:

Role:            PK=ROLE#{id}    SK=METADATA         GSI1=ENTITY#ROLE / ROLE#{id}    GSI2=ACCOUNT#{acct}#ROLES / ROLE#{id}
Permission:      PK=ROLE#{id}    SK=PERMISSION#{pid} GSI1=ROLE#{id}#PERMISSIONS / MENU#{key}
Group:           PK=GROUP#{id}   SK=METADATA         GSI1=ENTITY#GROUP / GROUP#{id}  GSI2=ACCOUNT#{acct}#GROUPS / GROUP#{id}
Group-role link: PK=GROUP#{id}   SK=ROLE#{roleId}
User:            PK=USER#{id}    SK=METADATA         GSI1=ENTITY#USER / USER#{id}    GSI2=ACCOUNT#{acct}#USERS / USER#{id}

Tenant parameters are not table items; they live in the parameter store under
/accounts/{accountId}/...
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

METADATA_SK = "METADATA"
INDEX_TYPE = "GSI1"
INDEX_SCOPE = "GSI2"

# Namespace for ids derived from natural keys (account + kind + name)
ENTITY_ID_NAMESPACE = uuid.UUID("6f1c3d2e-8a4b-4c5d-9e7f-0a1b2c3d4e5f")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def derive_id(*parts: str) -> str:
    """Stable id for a natural key, so concurrent creators collide on the same item."""
    return str(uuid.uuid5(ENTITY_ID_NAMESPACE, "#".join(parts)))


def role_pk(role_id: str) -> str:
    return f"ROLE#{role_id}"


def group_pk(group_id: str) -> str:
    return f"GROUP#{group_id}"


def user_pk(user_id: str) -> str:
    return f"USER#{user_id}"


def entity_type_key(kind: str) -> str:
    return f"ENTITY#{kind.upper()}"


def account_scope_key(account_id: str, collection: str) -> str:
    return f"ACCOUNT#{account_id}#{collection.upper()}"


def _without_none(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in item.items() if v is not None}


class Role(BaseModel):
    kind: Literal["role"] = "role"
    id: str
    account_id: str
    name: str
    description: Optional[str] = None
    permissions: int = 0
    enterprise_id: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: Optional[str] = None

    @property
    def key(self) -> Dict[str, str]:
        return {"PK": role_pk(self.id), "SK": METADATA_SK}

    def to_item(self) -> Dict[str, Any]:
        return _without_none({
            **self.key,
            "GSI1PK": entity_type_key("role"),
            "GSI1SK": role_pk(self.id),
            "GSI2PK": account_scope_key(self.account_id, "roles"),
            "GSI2SK": role_pk(self.id),
            "entityType": "ROLE",
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "permissions": self.permissions,
            "accountId": self.account_id,
            "enterpriseId": self.enterprise_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at or self.created_at,
        })

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Role":
        return cls(
            id=item["id"],
            account_id=item["accountId"],
            name=item["name"],
            description=item.get("description"),
            permissions=int(item.get("permissions", 0)),
            enterprise_id=item.get("enterpriseId"),
            created_at=item.get("createdAt") or utc_now(),
            updated_at=item.get("updatedAt"),
        )


class Permission(BaseModel):
    kind: Literal["permission"] = "permission"
    id: str
    role_id: str
    menu_key: str
    menu_label: str
    is_visible: bool = True
    can_view: bool = True
    can_create: bool = False
    can_edit: bool = False
    can_delete: bool = False
    created_at: str = Field(default_factory=utc_now)

    @staticmethod
    def id_for(role_id: str, menu_key: str) -> str:
        """One permission per (role, menu) pair, so the id is derived from both."""
        return derive_id("PERMISSION", role_id, menu_key)

    @property
    def key(self) -> Dict[str, str]:
        return {"PK": role_pk(self.role_id), "SK": f"PERMISSION#{self.id}"}

    def to_item(self) -> Dict[str, Any]:
        return {
            **self.key,
            "GSI1PK": f"{role_pk(self.role_id)}#PERMISSIONS",
            "GSI1SK": f"MENU#{self.menu_key}",
            "entityType": "PERMISSION",
            "id": self.id,
            "roleId": self.role_id,
            "menuKey": self.menu_key,
            "menuLabel": self.menu_label,
            "isVisible": self.is_visible,
            "canView": self.can_view,
            "canCreate": self.can_create,
            "canEdit": self.can_edit,
            "canDelete": self.can_delete,
            "createdAt": self.created_at,
            "updatedAt": self.created_at,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Permission":
        return cls(
            id=item["id"],
            role_id=item["roleId"],
            menu_key=item["menuKey"],
            menu_label=item.get("menuLabel", item["menuKey"]),
            is_visible=bool(item.get("isVisible", True)),
            can_view=bool(item.get("canView", False)),
            can_create=bool(item.get("canCreate", False)),
            can_edit=bool(item.get("canEdit", False)),
            can_delete=bool(item.get("canDelete", False)),
            created_at=item.get("createdAt") or utc_now(),
        )


class Group(BaseModel):
    kind: Literal["group"] = "group"
    id: str
    account_id: str
    name: str
    description: Optional[str] = None
    enterprise_id: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: Optional[str] = None

    @property
    def key(self) -> Dict[str, str]:
        return {"PK": group_pk(self.id), "SK": METADATA_SK}

    def to_item(self) -> Dict[str, Any]:
        return _without_none({
            **self.key,
            "GSI1PK": entity_type_key("group"),
            "GSI1SK": group_pk(self.id),
            "GSI2PK": account_scope_key(self.account_id, "groups"),
            "GSI2SK": group_pk(self.id),
            "entityType": "GROUP",
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "accountId": self.account_id,
            "enterpriseId": self.enterprise_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at or self.created_at,
        })

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Group":
        return cls(
            id=item["id"],
            account_id=item["accountId"],
            name=item["name"],
            description=item.get("description"),
            enterprise_id=item.get("enterpriseId"),
            created_at=item.get("createdAt") or utc_now(),
            updated_at=item.get("updatedAt"),
        )


class GroupRoleLink(BaseModel):
    kind: Literal["group_role_link"] = "group_role_link"
    group_id: str
    role_id: str
    created_at: str = Field(default_factory=utc_now)

    @property
    def id(self) -> str:
        return derive_id("LINK", self.group_id, self.role_id)

    @property
    def key(self) -> Dict[str, str]:
        return {"PK": group_pk(self.group_id), "SK": role_pk(self.role_id)}

    def to_item(self) -> Dict[str, Any]:
        return {
            **self.key,
            "entityType": "GROUP_ROLE",
            "id": self.id,
            "groupId": self.group_id,
            "roleId": self.role_id,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "GroupRoleLink":
        return cls(
            group_id=item["groupId"],
            role_id=item["roleId"],
            created_at=item.get("createdAt") or utc_now(),
        )


class User(BaseModel):
    kind: Literal["user"] = "user"
    id: str
    account_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    status: str = "active"
    cognito_sub: Optional[str] = None
    assigned_role: Optional[str] = None
    assigned_group: Optional[str] = None
    enterprise_id: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: Optional[str] = None

    @property
    def key(self) -> Dict[str, str]:
        return {"PK": user_pk(self.id), "SK": METADATA_SK}

    def to_item(self) -> Dict[str, Any]:
        return _without_none({
            **self.key,
            "GSI1PK": entity_type_key("user"),
            "GSI1SK": user_pk(self.id),
            "GSI2PK": account_scope_key(self.account_id, "users"),
            "GSI2SK": user_pk(self.id),
            "entityType": "USER",
            "id": self.id,
            "accountId": self.account_id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "status": self.status,
            "cognitoSub": self.cognito_sub,
            "assignedRole": self.assigned_role,
            "assignedGroup": self.assigned_group,
            "enterpriseId": self.enterprise_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at or self.created_at,
        })

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "User":
        return cls(
            id=item["id"],
            account_id=item["accountId"],
            email=item["email"],
            first_name=item.get("firstName"),
            last_name=item.get("lastName"),
            status=item.get("status", "active"),
            cognito_sub=item.get("cognitoSub"),
            assigned_role=item.get("assignedRole"),
            assigned_group=item.get("assignedGroup"),
            enterprise_id=item.get("enterpriseId"),
            created_at=item.get("createdAt") or utc_now(),
            updated_at=item.get("updatedAt"),
        )


class TenantParameter(BaseModel):
    """Discoverable per-account value in the parameter store."""
    kind: Literal["parameter"] = "parameter"
    account_id: str
    key: str  # e.g. "dynamodb/table-name"
    value: str
    description: Optional[str] = None

    @staticmethod
    def name_for(account_id: str, key: str) -> str:
        return f"/accounts/{account_id}/{key}"

    @property
    def name(self) -> str:
        return self.name_for(self.account_id, self.key)

    def to_put_request(self, overwrite: bool) -> Dict[str, Any]:
        request = {
            "Name": self.name,
            "Value": self.value,
            "Type": "String",
            "Overwrite": overwrite,
        }
        if self.description:
            request["Description"] = self.description
        return request

    @classmethod
    def from_parameter(cls, parameter: Dict[str, Any]) -> "TenantParameter":
        # /accounts/{id}/{key...}
        _, _, account_id, key = parameter["Name"].split("/", 3)
        return cls(account_id=account_id, key=key, value=parameter["Value"])


Entity = Union[Role, Permission, Group, GroupRoleLink, User]

_KIND_BY_ENTITY_TYPE = {
    "ROLE": Role,
    "PERMISSION": Permission,
    "GROUP": Group,
    "GROUP_ROLE": GroupRoleLink,
    "USER": User,
}


def entity_from_item(item: Dict[str, Any]) -> Entity:
    """Decode any control-plane item into its entity variant."""
    entity_type = item.get("entityType")
    if entity_type is None:
        sk = item.get("SK", "")
        pk = item.get("PK", "")
        if sk.startswith("PERMISSION#"):
            entity_type = "PERMISSION"
        elif pk.startswith("GROUP#") and sk.startswith("ROLE#"):
            entity_type = "GROUP_ROLE"
        else:
            entity_type = pk.split("#", 1)[0]
    model = _KIND_BY_ENTITY_TYPE.get(entity_type)
    if model is None:
        raise ValueError(f"Unknown entity type for item {item.get('PK')}/{item.get('SK')}")
    return model.from_item(item)
