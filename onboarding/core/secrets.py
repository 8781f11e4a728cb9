"""
Secrets Manager access with an in-process TTL cache.

The cache is shared within a warm process. Reads check expiry without locking,
so a value may be served slightly stale or fetched twice by concurrent
callers; it is best-effort, not linearizable. Call invalidate() or
invalidate_all() to force a refresh.
"""
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from onboarding.config import settings

logger = logging.getLogger(__name__)


class TTLCache:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = (value, self._clock() + ttl)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate_all(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def mask_secret_id(secret_id: str) -> str:
    """Mask ARN for logging"""
    if secret_id.startswith("arn:aws:secretsmanager:"):
        parts = secret_id.split(":")
        if len(parts) >= 7:
            return f"***:{':'.join(parts[6:])[:10]}..."
    return secret_id[:15] + "..."


class SecretsService:
    def __init__(self, client=None, cache: Optional[TTLCache] = None):
        self._client = client
        self.cache = cache or TTLCache(settings.secrets_cache_ttl_seconds)

    @property
    def client(self):
        if self._client is None:
            from onboarding.core.aws import get_client
            self._client = get_client("secretsmanager")
        return self._client

    def get_secret(self, secret_id: str, parse_json: bool = True) -> Any:
        """Get a secret value (cached)."""
        cached = self.cache.get(secret_id)
        if cached is not None:
            return cached

        try:
            response = self.client.get_secret_value(SecretId=secret_id)
        except Exception as e:
            logger.error(f"Failed to retrieve secret {mask_secret_id(secret_id)}: {str(e)}")
            raise

        secret_string = response.get("SecretString")
        if secret_string is None:
            raise ValueError(f"Secret {mask_secret_id(secret_id)} does not contain a string value")

        value = json.loads(secret_string) if parse_json else secret_string
        self.cache.set(secret_id, value)
        return value

    def invalidate(self, secret_id: str) -> None:
        self.cache.invalidate(secret_id)
        logger.debug(f"Cache invalidated for secret: {mask_secret_id(secret_id)}")

    def invalidate_all(self) -> None:
        self.cache.invalidate_all()
        logger.debug("All secret cache invalidated")

    def get_cognito_config(self) -> Dict[str, Any]:
        """Cognito settings from Secrets Manager when configured, else from the environment."""
        if settings.use_secrets_manager and settings.cognito_secret_arn:
            return self.get_secret(settings.cognito_secret_arn)
        return {
            "user_pool_id": settings.cognito_user_pool_id,
            "region": settings.aws_region,
        }
