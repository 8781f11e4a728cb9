import logging
import time
from typing import Callable, Dict, Optional, Set

from onboarding.config.rbac_defaults import (
    DEFAULT_ENTERPRISE_ID,
    DEFAULT_GROUPS,
    DEFAULT_ROLES,
    PERMISSION_MATRIX,
)
from onboarding.core.exceptions import error_code_for
from onboarding.core.metrics import MetricsEmitter
from onboarding.database.entities import Group, GroupRoleLink, Permission, Role, derive_id
from onboarding.database.entity_store import EntityStore
from onboarding.modules.notifications.schemas import LifecycleEvent
from onboarding.modules.notifications.service import SnsNotificationService
from onboarding.modules.rbac.schemas import SetupRBACEvent, SetupRBACResult

logger = logging.getLogger(__name__)


class RBACBootstrapWorker:
    """
    Creates the default roles, permission matrix, groups and group-role links
    for an account.

    Every write is create-if-absent and every id is derived from the account
    and the entity's natural key, so re-running for the same account (or two
    runs racing each other) converges on the same items with no duplicates.
    """

    WORKER_NAME = "setup-rbac"
    METRIC_PREFIX = "RBACSetup"

    def __init__(
        self,
        store: EntityStore,
        metrics: Optional[MetricsEmitter] = None,
        notifier: Optional[SnsNotificationService] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.metrics = metrics or MetricsEmitter()
        self.notifier = notifier or SnsNotificationService()
        self._clock = clock

    def run(self, event: SetupRBACEvent) -> SetupRBACResult:
        start = self._clock()
        logger.info(f"[{event.execution_id}] Setting up RBAC for account {event.account_id}")

        try:
            result = self.bootstrap(event)
        except Exception as e:
            duration_ms = (self._clock() - start) * 1000
            self.metrics.emit_worker_run(self.WORKER_NAME, self.METRIC_PREFIX, False, duration_ms)
            logger.error(f"[{event.execution_id}] RBAC setup failed for {event.account_id}: {str(e)}")
            self.notifier.notify(LifecycleEvent(
                account_id=event.account_id,
                account_name=event.account_name,
                cloud_type=event.cloud_type or "public",
                status="failed",
                duration_ms=duration_ms,
                error_code=error_code_for(e),
                message=f"RBAC setup failed: {str(e)}",
            ))
            raise

        duration_ms = (self._clock() - start) * 1000
        self.metrics.emit_worker_run(self.WORKER_NAME, self.METRIC_PREFIX, True, duration_ms)
        logger.info(
            f"[{event.execution_id}] RBAC setup complete for {event.account_id}: "
            f"{result.roles} roles, {result.groups} groups, {result.permissions} permissions "
            f"({result.roles_created}/{result.groups_created}/{result.permissions_created} new, "
            f"{duration_ms:.0f}ms)"
        )
        self.notifier.notify(LifecycleEvent(
            account_id=event.account_id,
            account_name=event.account_name,
            cloud_type=event.cloud_type or "public",
            status="completed",
            duration_ms=duration_ms,
            resource_count=result.roles + result.groups + result.permissions,
            message="Default roles, groups and permissions are in place",
        ))
        return result

    def bootstrap(self, event: SetupRBACEvent) -> SetupRBACResult:
        account_id = event.account_id
        enterprise_id = event.enterprise_id or DEFAULT_ENTERPRISE_ID
        result = SetupRBACResult(account_id=account_id, execution_id=event.execution_id)

        role_ids: Dict[str, str] = {}
        for definition in DEFAULT_ROLES:
            role_id, created = self.ensure_role(account_id, enterprise_id, definition)
            role_ids[definition["name"]] = role_id
            result.roles += 1
            result.roles_created += int(created)

        existing_menus: Dict[str, Set[str]] = {}
        for entry in PERMISSION_MATRIX:
            role_id = role_ids[entry["role_name"]]
            if role_id not in existing_menus:
                # A reused role may carry permissions written under other ids
                existing_menus[role_id] = {p.menu_key for p in self.store.list_role_permissions(role_id)}
            created = self.ensure_permission(role_id, entry, existing_menus[role_id])
            result.permissions += 1
            result.permissions_created += int(created)

        for definition in DEFAULT_GROUPS:
            group_id, created = self.ensure_group(account_id, enterprise_id, definition)
            result.groups += 1
            result.groups_created += int(created)

            role_id = role_ids.get(definition["role_name"])
            if role_id is None:
                logger.warning(f"Role {definition['role_name']} not found for group {definition['name']}")
                continue
            outcome = self.store.create_if_absent(GroupRoleLink(group_id=group_id, role_id=role_id))
            result.links_created += int(outcome.created)

        return result

    def ensure_role(self, account_id: str, enterprise_id: str, definition: dict):
        """Returns (role_id, created)."""
        existing = self.store.find_role_by_name(account_id, definition["name"])
        if existing:
            logger.debug(f"Role {definition['name']} already exists: {existing.id}")
            return existing.id, False

        outcome = self.store.create_if_absent(Role(
            id=derive_id(account_id, "ROLE", definition["name"]),
            account_id=account_id,
            name=definition["name"],
            description=definition["description"],
            permissions=definition["permissions"],
            enterprise_id=enterprise_id,
        ))
        if outcome.created:
            logger.info(f"Created role {definition['name']} for account {account_id}")
        return outcome.entity.id, outcome.created

    def ensure_group(self, account_id: str, enterprise_id: str, definition: dict):
        """Returns (group_id, created)."""
        existing = self.store.find_group_by_name(account_id, definition["name"])
        if existing:
            logger.debug(f"Group {definition['name']} already exists: {existing.id}")
            return existing.id, False

        outcome = self.store.create_if_absent(Group(
            id=derive_id(account_id, "GROUP", definition["name"]),
            account_id=account_id,
            name=definition["name"],
            description=definition["description"],
            enterprise_id=enterprise_id,
        ))
        if outcome.created:
            logger.info(f"Created group {definition['name']} for account {account_id}")
        return outcome.entity.id, outcome.created

    def ensure_permission(self, role_id: str, entry: dict, existing_menus: Set[str] = frozenset()) -> bool:
        """One permission per (role, menu); menus in existing_menus are left as they are."""
        if entry["menu_key"] in existing_menus:
            return False
        outcome = self.store.create_if_absent(Permission(
            id=Permission.id_for(role_id, entry["menu_key"]),
            role_id=role_id,
            menu_key=entry["menu_key"],
            menu_label=entry["menu_label"],
            is_visible=entry["can_view"],
            can_view=entry["can_view"],
            can_create=entry["can_create"],
            can_edit=entry["can_edit"],
            can_delete=entry["can_delete"],
        ))
        return outcome.created
