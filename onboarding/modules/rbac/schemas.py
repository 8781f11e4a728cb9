from typing import Literal, Optional

from onboarding.modules.provisioning.schemas import CamelModel


class SetupRBACEvent(CamelModel):
    account_id: str
    execution_id: str
    account_name: Optional[str] = None
    enterprise_id: Optional[str] = None
    cloud_type: Optional[str] = None


class SetupRBACResult(CamelModel):
    account_id: str
    execution_id: str
    # Steady-state counts, identical on every successful run for an account
    groups: int = 0
    roles: int = 0
    permissions: int = 0
    # Net-new writes made by this run
    roles_created: int = 0
    groups_created: int = 0
    permissions_created: int = 0
    links_created: int = 0
    status: Literal["SUCCESS", "FAILURE"] = "SUCCESS"
