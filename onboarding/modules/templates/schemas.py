from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from typing import Literal


class TemplateParameters(BaseModel):
    """Tenant parameters accepted by the storage template renderer."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    account_id: str = Field(
        validation_alias=AliasChoices("account_id", "accountId"),
        min_length=1, max_length=64, pattern=r"^[A-Za-z0-9][A-Za-z0-9-]*$",
    )
    account_name: str = Field(
        validation_alias=AliasChoices("account_name", "accountName"),
        min_length=1, max_length=256,
    )
    environment: Literal["dev", "staging", "prod"] = "dev"
    project_name: str = Field(
        "app",
        validation_alias=AliasChoices("project_name", "projectName"),
        min_length=1, max_length=64, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$",
    )
    billing_mode: Literal["PAY_PER_REQUEST", "PROVISIONED"] = Field(
        "PAY_PER_REQUEST", validation_alias=AliasChoices("billing_mode", "billingMode"),
    )
    read_capacity: int = Field(
        5, validation_alias=AliasChoices("read_capacity", "readCapacity"), ge=1, le=40000,
    )
    write_capacity: int = Field(
        5, validation_alias=AliasChoices("write_capacity", "writeCapacity"), ge=1, le=40000,
    )
    enable_point_in_time_recovery: Literal["true", "false"] = Field(
        "true",
        validation_alias=AliasChoices("enable_point_in_time_recovery", "enablePointInTimeRecovery", "enablePITR"),
    )
    enable_deletion_protection: Literal["true", "false"] = Field(
        "true",
        validation_alias=AliasChoices("enable_deletion_protection", "enableDeletionProtection"),
    )

    @field_validator("enable_point_in_time_recovery", "enable_deletion_protection", mode="before")
    @classmethod
    def _flag_to_string(cls, value):
        if isinstance(value, bool):
            return "true" if value else "false"
        return value

    @property
    def is_provisioned(self) -> bool:
        return self.billing_mode == "PROVISIONED"

    @property
    def table_name(self) -> str:
        return f"{self.project_name}-{self.environment}-{self.account_id}"

    @property
    def stack_name(self) -> str:
        return f"{self.project_name}-{self.environment}-account-{self.account_id}"
