import boto3
from botocore.config import Config
from onboarding.config import settings

# Transient throttling/timeouts are retried by the SDK only
_BOTO_CONFIG = Config(retries={"max_attempts": 3, "mode": "standard"})


class AWSClients:
    _clients: dict = {}
    _dynamodb = None

    @classmethod
    def _credentials(cls) -> dict:
        if settings.aws_access_key_id and settings.aws_secret_access_key:
            return {
                "aws_access_key_id": settings.aws_access_key_id,
                "aws_secret_access_key": settings.aws_secret_access_key,
            }
        return {}

    @classmethod
    def client(cls, service_name: str):
        if service_name not in cls._clients:
            cls._clients[service_name] = boto3.client(
                service_name,
                region_name=settings.aws_region,
                config=_BOTO_CONFIG,
                **cls._credentials()
            )
        return cls._clients[service_name]

    @classmethod
    def dynamodb_resource(cls):
        if cls._dynamodb is None:
            cls._dynamodb = boto3.resource(
                "dynamodb",
                region_name=settings.aws_region,
                config=_BOTO_CONFIG,
                **cls._credentials()
            )
        return cls._dynamodb

    @classmethod
    def reset(cls):
        cls._clients = {}
        cls._dynamodb = None


def get_client(service_name: str):
    return AWSClients.client(service_name)
