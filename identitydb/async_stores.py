"""IdentityDB stores over an aioboto3 DynamoDB Table.

This module provides async versions of the public API:

- `AsyncUserStore` for users, their invitations and memberships
- `AsyncOrganisationStore` for organisations, their members, groups and services

They write exactly the same records as the blocking stores.

Requires aioboto3 to be installed. Install with: pip install 'identitydb[async]'

Example:
    async with open_table(StoreSettings()) as table:
        store = AsyncOrganisationStore(table)
        organisation_id = await store.create(owner, "Springfield Nuclear")
"""

from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from typing import Any

import aioboto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from identitydb.base import (
    AsyncTable,
    QueryResult,
    TransactItem,
    _OrganisationStoreBase,
    _StoreBase,
    _UserStoreBase,
)
from identitydb.entities import Organisation, OrganisationDetails, Service, User, UserDetails
from identitydb.exceptions import (
    AlreadyExistsError,
    ConditionCheckFailedError,
    NotFoundError,
    TransactionAbortedError,
)
from identitydb.groupset import GroupSet
from identitydb.keys import (
    DynamoDBKey,
    LastEvaluatedKey,
    organisation_key,
    organisation_member_key,
    organisation_partition_key,
    organisation_service_key,
    user_key,
    user_partition_key,
)
from identitydb.projection import build_organisation_details, build_user_details
from identitydb.records import (
    OrganisationRecord,
    OrganisationServiceRecord,
    UserRecord,
)
from identitydb.settings import StoreSettings

log = structlog.get_logger(__name__)


@asynccontextmanager
async def open_table(settings: StoreSettings | None = None) -> AsyncIterator[AsyncTable]:
    """Open the table described by the settings for the duration of the block."""
    settings = settings or StoreSettings()
    session = aioboto3.Session()
    async with session.resource("dynamodb", **settings.resource_kwargs()) as dynamodb:
        yield await dynamodb.Table(settings.table_name)


class _AsyncStoreBase(_StoreBase[AsyncTable]):
    """Internal base class executing requests with aioboto3."""

    async def check_key_schema(self) -> None:
        """Verify the table is keyed by `id` and `rng`.

        Raises:
            InvalidKeySchemaError: If it is not.

        """
        self._validate_key_schema(await self.table.key_schema)

    async def _get_item(self, *, key: DynamoDBKey, operation: str) -> dict[str, Any]:
        try:
            response = await self.table.get_item(**self._build_get_kwargs(key=key))
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(exc, operation=operation, key=key) from exc

        item = response.get("Item")
        if item is None:
            raise NotFoundError(operation=operation, key=key)
        return item

    async def _put_item(self, put_kwargs: dict[str, Any], *, operation: str) -> None:
        try:
            await self.table.put_item(**put_kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(
                exc, operation=operation, key=self._item_key(put_kwargs["Item"])
            ) from exc

    async def _update_item(self, update_kwargs: dict[str, Any], *, operation: str) -> None:
        try:
            await self.table.update_item(**update_kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(
                exc, operation=operation, key=update_kwargs["Key"]
            ) from exc

    async def _update_existing_item(
        self, update_kwargs: dict[str, Any], *, operation: str
    ) -> None:
        try:
            await self._update_item(update_kwargs, operation=operation)
        except ConditionCheckFailedError as exc:
            raise NotFoundError(
                operation=operation, key=exc.key, original_error=exc.original_error
            ) from exc

    async def _delete_item(self, *, key: DynamoDBKey, operation: str) -> None:
        try:
            await self.table.delete_item(**self._build_delete_kwargs(key=key))
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(exc, operation=operation, key=key) from exc

    async def _query(
        self,
        *,
        partition_key: str,
        exclusive_start_key: LastEvaluatedKey | None,
        operation: str,
    ) -> QueryResult:
        query_kwargs = self._build_query_kwargs(
            partition_key=partition_key,
            exclusive_start_key=exclusive_start_key,
        )
        try:
            response = await self.table.query(**query_kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(exc, operation=operation) from exc

        last_evaluated_key: LastEvaluatedKey | None = response.get("LastEvaluatedKey")  # type: ignore[assignment]
        return QueryResult(
            items=list(response.get("Items", [])),
            last_evaluated_key=last_evaluated_key,
        )

    async def _query_all(self, *, partition_key: str, operation: str) -> list[dict[str, Any]]:
        """Read every item of a partition, following pagination to the end."""
        all_items: list[dict[str, Any]] = []
        last_key: LastEvaluatedKey | None = None

        while True:
            items, last_key = await self._query(
                partition_key=partition_key,
                exclusive_start_key=last_key,
                operation=operation,
            )
            all_items.extend(items)

            if last_key is None:
                break

        log.debug(
            "partition.read",
            partition_key=partition_key,
            item_count=len(all_items),
            operation=operation,
        )
        return all_items

    async def _transact_write(
        self,
        items: list[TransactItem],
        *,
        operation: str,
        key: DynamoDBKey | None = None,
    ) -> None:
        try:
            await self.table.meta.client.transact_write_items(TransactItems=items)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(exc, operation=operation, key=key) from exc


class AsyncUserStore(_AsyncStoreBase, _UserStoreBase[AsyncTable]):
    """Stores users and their side of organisation memberships (async version)."""

    async def put(self, user: User) -> None:
        record = UserRecord.from_user(user)
        await self._put_item(self._build_put_kwargs(record=record), operation="UserStore.put")
        log.info("user.put", user_id=user.id)

    async def get(self, user_id: str) -> User:
        item = await self._get_item(key=user_key(user_id.lower()), operation="UserStore.get")
        return UserRecord.decode(item).to_user()

    async def get_details(self, user_id: str) -> UserDetails:
        operation = "UserStore.get_details"
        partition_key = user_partition_key(user_id.lower())
        items = await self._query_all(partition_key=partition_key, operation=operation)
        return build_user_details(items)

    async def invite(
        self,
        user: User,
        organisation: Organisation,
        groups: Iterable[str] = (),
        service_groups: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        items = self._build_invite_items(user, organisation, groups, service_groups)
        await self._transact_write(
            items,
            operation="UserStore.invite",
            key=organisation_member_key(organisation.id, user.id),
        )
        log.info("user.invited", user_id=user.id, organisation_id=organisation.id)

    async def accept_invite(self, user: User, organisation: Organisation) -> None:
        await self._update_existing_item(
            self._build_accept_invite_kwargs(user, organisation),
            operation="UserStore.accept_invite",
        )
        log.info("user.invite_accepted", user_id=user.id, organisation_id=organisation.id)

    async def reject_invite(self, user: User, organisation: Organisation) -> None:
        await self._transact_write(
            self._build_reject_invite_items(user, organisation),
            operation="UserStore.reject_invite",
            key=organisation_member_key(organisation.id, user.id),
        )
        log.info("user.invite_rejected", user_id=user.id, organisation_id=organisation.id)


class AsyncOrganisationStore(_AsyncStoreBase, _OrganisationStoreBase[AsyncTable]):
    """Stores organisations, their members, groups and services (async version)."""

    async def create(self, owner: User, name: str) -> str:
        operation = "OrganisationStore.create"
        organisation, items = self._build_create_items(owner, name)
        key = organisation_key(organisation.id)
        try:
            await self._transact_write(items, operation=operation, key=key)
        except TransactionAbortedError as exc:
            if not self._is_creation_conflict(exc):
                raise
            raise AlreadyExistsError(
                operation=operation, key=key, original_error=exc.original_error
            ) from exc
        log.info("organisation.created", organisation_id=organisation.id, owner=owner.id)
        return organisation.id

    async def put(self, organisation: Organisation) -> None:
        record = OrganisationRecord.from_organisation(organisation)
        await self._put_item(
            self._build_put_kwargs(record=record), operation="OrganisationStore.put"
        )
        log.info("organisation.put", organisation_id=organisation.id)

    async def get(self, organisation_id: str) -> Organisation:
        item = await self._get_item(
            key=organisation_key(organisation_id), operation="OrganisationStore.get"
        )
        return OrganisationRecord.decode(item).to_organisation()

    async def get_details(self, organisation_id: str) -> OrganisationDetails:
        operation = "OrganisationStore.get_details"
        items = await self._query_all(
            partition_key=organisation_partition_key(organisation_id), operation=operation
        )
        return build_organisation_details(items)

    async def create_service(self, organisation_id: str, name: str) -> str:
        operation = "OrganisationStore.create_service"
        service, put_kwargs = self._build_create_service_kwargs(organisation_id, name)
        try:
            await self._put_item(put_kwargs, operation=operation)
        except ConditionCheckFailedError as exc:
            raise AlreadyExistsError(
                operation=operation, key=exc.key, original_error=exc.original_error
            ) from exc
        log.info("service.created", organisation_id=organisation_id, service_id=service.id)
        return service.id

    async def put_service(self, organisation_id: str, service: Service) -> None:
        record = OrganisationServiceRecord.from_service(organisation_id, service)
        await self._put_item(
            self._build_put_kwargs(record=record), operation="OrganisationStore.put_service"
        )
        log.info("service.put", organisation_id=organisation_id, service_id=service.id)

    async def delete_service(self, organisation_id: str, service_id: str) -> None:
        await self._delete_item(
            key=organisation_service_key(organisation_id, service_id),
            operation="OrganisationStore.delete_service",
        )
        log.info("service.deleted", organisation_id=organisation_id, service_id=service_id)

    async def add_user_to_organisation_groups(
        self, organisation_id: str, user: User, *groups: str
    ) -> None:
        await self.add_user_to_groups(organisation_id, user, groups)

    async def add_user_to_service_groups(
        self, organisation_id: str, user: User, service_id: str, *groups: str
    ) -> None:
        await self.add_user_to_groups(organisation_id, user, service_groups={service_id: groups})

    async def add_user_to_groups(
        self,
        organisation_id: str,
        user: User,
        groups: Iterable[str] = (),
        service_groups: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        group_set = GroupSet(groups, service_groups)
        await self._update_item(
            self._build_add_member_kwargs(organisation_id, user, group_set),
            operation="OrganisationStore.add_user_to_groups",
        )
        log.info(
            "member.groups_added",
            organisation_id=organisation_id,
            user_id=user.id,
            groups=sorted(group_set.encode()),
        )

    async def remove_user_from_organisation_groups(
        self, organisation_id: str, user_id: str, *groups: str
    ) -> None:
        await self.remove_user_from_groups(organisation_id, user_id, groups)

    async def remove_user_from_service_groups(
        self, organisation_id: str, user_id: str, service_id: str, *groups: str
    ) -> None:
        await self.remove_user_from_groups(
            organisation_id, user_id, service_groups={service_id: groups}
        )

    async def remove_user_from_groups(
        self,
        organisation_id: str,
        user_id: str,
        groups: Iterable[str] = (),
        service_groups: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        group_set = GroupSet(groups, service_groups)
        await self._update_existing_item(
            self._build_remove_member_groups_kwargs(organisation_id, user_id, group_set),
            operation="OrganisationStore.remove_user_from_groups",
        )
        log.info(
            "member.groups_removed",
            organisation_id=organisation_id,
            user_id=user_id.lower(),
            groups=sorted(group_set.encode()),
        )

    async def remove_user(self, organisation_id: str, user_id: str) -> None:
        await self._delete_item(
            key=organisation_member_key(organisation_id, user_id.lower()),
            operation="OrganisationStore.remove_user",
        )
        log.info("member.removed", organisation_id=organisation_id, user_id=user_id.lower())

    async def update_user_details(self, organisation_id: str, user: User) -> None:
        await self._update_existing_item(
            self._build_update_user_details_kwargs(organisation_id, user),
            operation="OrganisationStore.update_user_details",
        )
        log.info("member.details_updated", organisation_id=organisation_id, user_id=user.id)


__all__ = [
    "AsyncOrganisationStore",
    "AsyncUserStore",
    "open_table",
]
