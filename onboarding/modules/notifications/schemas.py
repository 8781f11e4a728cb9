from pydantic import BaseModel
from typing import Literal, Optional


class LifecycleEvent(BaseModel):
    account_id: str
    account_name: Optional[str] = None
    cloud_type: str = "private"
    status: Literal["completed", "failed"]
    message: Optional[str] = None
    duration_ms: Optional[float] = None
    resource_count: Optional[int] = None
    error_code: Optional[str] = None
    stack_id: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status == "completed"

    @property
    def display_name(self) -> str:
        return self.account_name or self.account_id
