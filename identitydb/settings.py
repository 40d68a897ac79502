"""Store configuration loaded from environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Where the identity table lives.

    Environment variables:
        IDENTITYDB_TABLE_NAME: DynamoDB table name (default: identity)
        IDENTITYDB_REGION_NAME: AWS region (default: eu-west-1)
        IDENTITYDB_ENDPOINT_URL: Endpoint override, e.g. for DynamoDB Local
    """

    model_config = SettingsConfigDict(env_prefix="IDENTITYDB_", extra="ignore")

    table_name: str = "identity"
    region_name: str = "eu-west-1"
    endpoint_url: str | None = None

    def resource_kwargs(self) -> dict[str, str]:
        """Keyword arguments for boto3/aioboto3 `resource("dynamodb", ...)`."""
        kwargs = {"region_name": self.region_name}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        return kwargs


__all__ = [
    "StoreSettings",
]
