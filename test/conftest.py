"""Shared test fixtures.

This module provides:
- Fake AWS credentials for every test session
- A moto-backed identity table keyed by `id` and `rng`
- DynamoDB Local identity tables, sync and async, for integration tests
- A controllable clock and a deterministic ID factory for the stores
- Sample users
"""

from collections.abc import AsyncGenerator, Generator
from datetime import datetime, timedelta, timezone
from itertools import count
from os import environ

import aioboto3
import boto3
from moto import mock_aws
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table
from pytest import fixture
from pytest_asyncio import fixture as async_fixture
from testcontainers.core.container import DockerContainer  # type: ignore[import-untyped]
from testcontainers.core.wait_strategies import (  # type: ignore[import-untyped]
    HttpWaitStrategy,
)
from types_aiobotocore_dynamodb.service_resource import Table as AsyncTable

from identitydb.entities import User
from identitydb.sync_stores import OrganisationStore, UserStore

START = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


class FakeClock:
    """Returns a fixed instant until told to move on."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class SequentialIds:
    """Returns `<prefix>-1`, `<prefix>-2`, ..."""

    def __init__(self, prefix: str = "id") -> None:
        self.prefix = prefix
        self._counter = count(1)

    def __call__(self) -> str:
        return f"{self.prefix}-{next(self._counter)}"


def identity_table_definition(table_name: str = "identity") -> dict:
    return {
        "TableName": table_name,
        "KeySchema": [
            {"AttributeName": "id", "KeyType": "HASH"},
            {"AttributeName": "rng", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "id", "AttributeType": "S"},
            {"AttributeName": "rng", "AttributeType": "S"},
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }


@fixture(scope="session", autouse=True)
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    environ["AWS_ACCESS_KEY_ID"] = "testing"
    environ["AWS_SECRET_ACCESS_KEY"] = "testing"  # noqa: S105
    environ["AWS_SECURITY_TOKEN"] = "testing"  # noqa: S105
    environ["AWS_SESSION_TOKEN"] = "testing"  # noqa: S105
    environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@fixture
def table() -> Generator[Table, None, None]:
    """Identity table: id (PK) + rng (SK)."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="eu-west-1")
        table = dynamodb.create_table(**identity_table_definition())
        table.wait_until_exists()
        yield table


@fixture
def clock() -> FakeClock:
    return FakeClock()


@fixture
def ids() -> SequentialIds:
    return SequentialIds()


@fixture
def user_store(table: Table, clock: FakeClock, ids: SequentialIds) -> UserStore:
    return UserStore(table, now=clock, new_id=ids)


@fixture
def organisation_store(
    table: Table, clock: FakeClock, ids: SequentialIds
) -> OrganisationStore:
    return OrganisationStore(table, now=clock, new_id=ids)


@fixture
def homer() -> User:
    return User(
        id="Homer@Example.com",
        first_name="Homer",
        last_name="Simpson",
        phone="555-0101",
        created_at=START - timedelta(days=30),
    )


@fixture
def marge() -> User:
    return User(
        id="marge@example.com",
        first_name="Marge",
        last_name="Simpson",
        created_at=START - timedelta(days=20),
    )


@fixture
def lisa() -> User:
    return User(id="lisa@example.com", first_name="Lisa", created_at=START - timedelta(days=10))


# DynamoDB Local


@fixture(scope="session")
def dynamodb_local_endpoint(aws_credentials: None) -> Generator[str, None, None]:
    """Session-scoped DynamoDB Local container shared by sync and async tests."""
    with DockerContainer(
        "amazon/dynamodb-local:latest",
        ports=[8000],
        _wait_strategy=HttpWaitStrategy(8000).for_status_code(400),
    ) as container:
        yield f"http://localhost:{container.get_exposed_port(8000)}"


@fixture(scope="session")
def dynamodb_local(dynamodb_local_endpoint: str) -> DynamoDBServiceResource:
    return boto3.resource("dynamodb", endpoint_url=dynamodb_local_endpoint)


@fixture
def local_table(dynamodb_local: DynamoDBServiceResource) -> Generator[Table, None, None]:
    table = dynamodb_local.create_table(**identity_table_definition("identity-sync"))
    table.wait_until_exists()

    yield table

    table.delete()


@async_fixture
async def async_local_table(
    dynamodb_local_endpoint: str,
) -> AsyncGenerator[AsyncTable, None]:
    session = aioboto3.Session()
    async with session.resource("dynamodb", endpoint_url=dynamodb_local_endpoint) as dynamodb:
        table = await dynamodb.create_table(**identity_table_definition("identity-async"))
        await table.wait_until_exists()

        yield table

        await table.delete()
