from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # AWS (will read from uppercase env vars automatically)
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: str = "us-east-1"

    # Control-plane single table shared by all entities
    control_plane_table_name: str = "app_data"
    # Table registered for public (shared) accounts
    shared_table_name: Optional[str] = None

    # Storage provisioning
    stack_poll_interval_seconds: float = 10.0
    stack_max_wait_seconds: float = 540.0

    # Notifications: an empty topic ARN disables publishing
    sns_provisioning_topic_arn: str = ""
    platform_name: str = "License Portal"

    # Metrics
    cloudwatch_metrics_enabled: bool = True

    # Reconciliation sweep
    reconciliation_enabled: bool = False
    reconciliation_dry_run: bool = False
    reconciliation_interval_seconds: int = 86400
    include_inactive_users: bool = False

    # Identity provider
    cognito_user_pool_id: Optional[str] = None
    cognito_secret_arn: Optional[str] = None

    # Secrets Manager
    use_secrets_manager: bool = False
    secrets_cache_ttl_seconds: float = 300.0

    # App
    app_name: str = "tenant-onboarding"
    project_name: str = "app"
    debug: bool = False
    environment: str = "dev"  # dev | staging | prod
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "prod"

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.sns_provisioning_topic_arn)

    @property
    def metrics_namespace(self) -> str:
        return f"{self.project_name}/Workers"

    def get_shared_table_name(self) -> str:
        return self.shared_table_name or self.control_plane_table_name

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
