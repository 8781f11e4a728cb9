import logging
from typing import Any, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

from onboarding.config import settings
from onboarding.core.exceptions import ConfigurationError, aws_error_code
from onboarding.core.secrets import SecretsService
from onboarding.database.entities import User, utc_now
from onboarding.database.entity_store import EntityStore
from onboarding.modules.reconciliation.sweep import ReconciliationDetail, ReconciliationReport

logger = logging.getLogger(__name__)


def _attribute(attributes: List[Dict[str, str]], name: str) -> Optional[str]:
    for attribute in attributes:
        if attribute.get("Name") == name:
            return attribute.get("Value")
    return None


class IdentityReconciler:
    """Repairs users that have no identity-provider subject recorded."""

    def __init__(
        self,
        store: EntityStore,
        cognito_client=None,
        secrets: Optional[SecretsService] = None,
        include_inactive: Optional[bool] = None,
    ):
        self.store = store
        self._client = cognito_client
        self.secrets = secrets or SecretsService()
        self.include_inactive = settings.include_inactive_users if include_inactive is None else include_inactive

    @property
    def client(self):
        if self._client is None:
            from onboarding.core.aws import get_client
            self._client = get_client("cognito-idp")
        return self._client

    def user_pool_id(self) -> str:
        pool_id = self.secrets.get_cognito_config().get("user_pool_id")
        if not pool_id:
            raise ConfigurationError("Cognito is not configured (user pool id missing), cannot reconcile")
        return pool_id

    def list_users(self, account_id: Optional[str] = None) -> List[User]:
        if account_id:
            items = self.store.query_scope(account_id, "users")
        else:
            items = self.store.query_type("user")
        return [User.from_item(item) for item in items]

    def needs_identity(self, user: User) -> bool:
        return not user.cognito_sub and (self.include_inactive or user.status == "active")

    def reconcile(self, dry_run: bool = False, account_id: Optional[str] = None) -> ReconciliationReport:
        pool_id = self.user_pool_id()
        users = self.list_users(account_id)
        targets = [u for u in users if self.needs_identity(u)]
        report = ReconciliationReport(scanned=len(users), missing=len(targets), dry_run=dry_run)
        logger.info(f"Reconciliation scan: {len(users)} users, {len(targets)} missing an identity")

        for user in targets:
            if dry_run:
                report.record(ReconciliationDetail(user.id, user.email, "skipped", "Dry run, no changes applied"))
                continue
            try:
                subject, created = self.ensure_identity(pool_id, user)
                self.store.update_attributes(user.key, {"cognitoSub": subject, "updatedAt": utc_now()})
            except Exception as e:
                report.record(ReconciliationDetail(user.id, user.email, "failed", str(e)))
                continue

            status = "provisioned" if created else "updated"
            report.record(ReconciliationDetail(user.id, user.email, status))
            logger.info(f"Reconciled ({status}): {user.email} -> {subject}")

        return report

    def ensure_identity(self, pool_id: str, user: User) -> Tuple[str, bool]:
        """Create the identity, or look it up if it already exists. Returns (subject, created)."""
        attributes = [
            {"Name": "email", "Value": user.email},
            {"Name": "email_verified", "Value": "true"},
        ]
        if user.first_name:
            attributes.append({"Name": "given_name", "Value": user.first_name})
        if user.last_name:
            attributes.append({"Name": "family_name", "Value": user.last_name})

        try:
            response = self.client.admin_create_user(
                UserPoolId=pool_id,
                Username=user.email,
                UserAttributes=attributes,
                DesiredDeliveryMediums=["EMAIL"],
            )
            user_attributes = response["User"].get("Attributes", [])
            created = True
        except ClientError as e:
            if aws_error_code(e) != "UsernameExistsException":
                raise
            response = self.client.admin_get_user(UserPoolId=pool_id, Username=user.email)
            user_attributes = response.get("UserAttributes", [])
            created = False

        subject = _attribute(user_attributes, "sub")
        if not subject:
            raise ValueError(f"Identity for {user.email} has no subject attribute")
        return subject, created
