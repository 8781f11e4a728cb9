from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import List, Literal, Optional


class CamelModel(BaseModel):
    """Accepts camelCase (orchestrator payloads) or snake_case keys; dumps camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ProvisionerEvent(CamelModel):
    action: Literal["register_public", "provision_private"] = "provision_private"
    account_id: str
    account_name: str
    execution_id: str
    billing_mode: str = "PAY_PER_REQUEST"
    read_capacity: int = 5
    write_capacity: int = 5
    enable_point_in_time_recovery: str = "true"
    enable_deletion_protection: str = "true"

    @property
    def cloud_type(self) -> str:
        return "public" if self.action == "register_public" else "private"


class ProvisioningResult(CamelModel):
    account_id: str
    execution_id: str
    cloud_type: str
    table_name: str
    table_arn: Optional[str] = None
    stack_name: Optional[str] = None
    stack_id: Optional[str] = None
    status: str = "active"


class PollInfraEvent(CamelModel):
    account_id: str
    execution_id: str
    account_name: Optional[str] = None
    cloud_type: str = "public"
    stack_name: Optional[str] = None
    # Status reported by the preceding create/delete step
    status: Optional[str] = None


InfraStatus = Literal["READY", "CREATING", "DELETING", "DELETED", "FAILED"]


class PollInfraResult(CamelModel):
    account_id: str
    execution_id: str
    account_name: Optional[str] = None
    cloud_type: Optional[str] = None
    stack_name: Optional[str] = None
    status: InfraStatus
    detail: Optional[str] = None
    table_name: Optional[str] = None
    table_arn: Optional[str] = None


class DeleteInfraEvent(CamelModel):
    action: Optional[Literal["delete_public", "delete_private"]] = None
    account_id: str
    execution_id: str
    account_name: Optional[str] = None
    cloud_type: Optional[str] = None

    @property
    def resolved_action(self) -> str:
        if self.action:
            return self.action
        return "delete_private" if self.cloud_type == "private" else "delete_public"


class DeleteInfraResult(CamelModel):
    account_id: str
    execution_id: str
    status: InfraStatus
    stack_name: Optional[str] = None
    items_deleted: int = 0


class ProvisioningStatusResponse(CamelModel):
    account_id: str
    status: str
    cloud_type: Optional[str] = None
    table_name: Optional[str] = None
    table_arn: Optional[str] = None


class VerifyInfraEvent(CamelModel):
    account_id: str
    execution_id: str
    account_name: Optional[str] = None
    cloud_type: Optional[str] = None
    # Falls back to the recorded table-name parameter
    table_name: Optional[str] = None


class VerificationCheck(CamelModel):
    name: str
    passed: bool
    detail: Optional[str] = None


class VerifyInfraResult(CamelModel):
    account_id: str
    execution_id: str
    verified: bool
    status: Literal["active", "partial"]
    table_name: Optional[str] = None
    verified_at: str
    checks: List[VerificationCheck] = []
