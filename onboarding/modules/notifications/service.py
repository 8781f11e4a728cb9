import logging
import re
import unicodedata
from datetime import datetime, timezone
from typing import Dict, List, Optional

from onboarding.config import settings
from onboarding.modules.notifications.schemas import LifecycleEvent

logger = logging.getLogger(__name__)

# SNS rejects subjects longer than 100 characters
MAX_SUBJECT_LENGTH = 100
RULE = "-" * 40


def subject_safe(text: str) -> str:
    """SNS subjects must be printable ASCII on a single line."""
    ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"\s+", " ", re.sub(r"[^\x20-\x7e]", " ", ascii_text)).strip()


class SnsNotificationService:
    """
    Publishes provisioning lifecycle events to an SNS topic.
    Disabled when no topic ARN is configured: calls return without any network I/O.
    Publishing never raises; failures are logged so the caller's workflow is never blocked.
    """

    def __init__(
        self,
        client=None,
        topic_arn: Optional[str] = None,
        environment: Optional[str] = None,
        platform_name: Optional[str] = None,
    ):
        self.topic_arn = settings.sns_provisioning_topic_arn if topic_arn is None else topic_arn
        self.environment = environment or settings.environment
        self.platform_name = platform_name or settings.platform_name
        self._client = client

    @property
    def is_enabled(self) -> bool:
        return bool(self.topic_arn)

    @property
    def client(self):
        if self._client is None:
            from onboarding.core.aws import get_client
            self._client = get_client("sns")
        return self._client

    def notify(self, event: LifecycleEvent) -> None:
        """Publish a provisioning completion or failure notification."""
        self._publish("Provisioning", event)

    def notify_deprovisioning(self, event: LifecycleEvent) -> None:
        self._publish("Deprovisioning", event)

    def build_subject(self, operation: str, event: LifecycleEvent) -> str:
        status_label = "COMPLETED" if event.is_success else "FAILED"
        name = subject_safe(event.display_name) or event.account_id
        subject = f"{operation} {status_label}: {name} [{self.environment}]"
        return subject[:MAX_SUBJECT_LENGTH]

    def build_body(self, operation: str, event: LifecycleEvent) -> str:
        status_label = "COMPLETED" if event.is_success else "FAILED"
        lines: List[str] = [
            f"{operation} {status_label}",
            RULE,
            "",
            f"Account:      {event.display_name}",
            f"Account ID:   {event.account_id}",
            f"Cloud Type:   {event.cloud_type}",
            f"Environment:  {self.environment}",
            f"Platform:     {self.platform_name}",
            "",
        ]

        if event.duration_ms is not None:
            lines.append(f"Duration:     {event.duration_ms / 1000:.1f}s")

        if event.is_success:
            if event.resource_count is not None:
                lines.append(f"Resources:    {event.resource_count} created")
            if event.stack_id:
                lines.append(f"Stack ID:     {event.stack_id}")
            lines.append("")
            lines.append(f"{operation} finished successfully.")
        else:
            if event.error_code:
                lines.append(f"Error Code:   {event.error_code}")
            if event.message:
                lines.append(f"Error:        {event.message}")
            lines.append("")
            lines.append("Please investigate the failure and retry if necessary.")

        lines.append("")
        lines.append(RULE)
        lines.append(f"Sent by {self.platform_name} at {datetime.now(timezone.utc).isoformat()}")
        return "\n".join(lines)

    def build_attributes(self, event: LifecycleEvent) -> Dict[str, Dict[str, str]]:
        """String attributes used by subscription filter policies."""
        return {
            "environment": {"DataType": "String", "StringValue": self.environment},
            "accountId": {"DataType": "String", "StringValue": event.account_id},
            "cloudType": {"DataType": "String", "StringValue": event.cloud_type},
            "status": {"DataType": "String", "StringValue": event.status},
        }

    def _publish(self, operation: str, event: LifecycleEvent) -> None:
        if not self.is_enabled:
            logger.debug(f"SNS notification skipped for account {event.account_id} (disabled)")
            return

        try:
            self.client.publish(
                TopicArn=self.topic_arn,
                Subject=self.build_subject(operation, event),
                Message=self.build_body(operation, event),
                MessageAttributes=self.build_attributes(event),
            )
            logger.info(f"SNS notification sent: {operation} {event.status} for account {event.account_id}")
        except Exception as e:
            logger.error(f"Failed to send SNS notification for account {event.account_id}: {str(e)}")
