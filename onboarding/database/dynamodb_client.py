from onboarding.config import settings
from onboarding.core.aws import AWSClients


class DynamoDBClient:
    _table = None

    @classmethod
    def get_table(cls):
        """Control-plane single table (boto3 Table resource)."""
        if cls._table is None:
            cls._table = AWSClients.dynamodb_resource().Table(settings.control_plane_table_name)
        return cls._table

    @classmethod
    def reset_client(cls):
        cls._table = None


def get_table():
    return DynamoDBClient.get_table()
