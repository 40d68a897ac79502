"""IdentityDB stores over a boto3 DynamoDB Table.

This module provides the blocking public API:

- `UserStore` for users, their invitations and memberships
- `OrganisationStore` for organisations, their members, groups and services

Both stores are stateless apart from the table resource, so one instance can
be shared by many threads.
"""

from collections.abc import Iterable, Mapping
from typing import Any

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError
from typing_extensions import Self

from identitydb.base import (
    Clock,
    IdFactory,
    QueryResult,
    SyncTable,
    TransactItem,
    _OrganisationStoreBase,
    _StoreBase,
    _UserStoreBase,
    new_uuid,
    utc_now,
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


class _SyncStoreBase(_StoreBase[SyncTable]):
    """Internal base class executing requests with boto3.

    Every botocore error is translated into an IdentityDB exception that
    names the store operation and the key involved.
    """

    @classmethod
    def from_settings(
        cls,
        settings: StoreSettings | None = None,
        *,
        now: Clock = utc_now,
        new_id: IdFactory = new_uuid,
    ) -> Self:
        """Create a store for the table described by the settings.

        Example:
            store = UserStore.from_settings(StoreSettings(table_name="identity"))

        """
        settings = settings or StoreSettings()
        dynamodb = boto3.resource("dynamodb", **settings.resource_kwargs())
        return cls(dynamodb.Table(settings.table_name), now=now, new_id=new_id)

    def check_key_schema(self) -> None:
        """Verify the table is keyed by `id` and `rng`.

        Raises:
            InvalidKeySchemaError: If it is not.

        """
        self._validate_key_schema(self.table.key_schema)

    def _get_item(self, *, key: DynamoDBKey, operation: str) -> dict[str, Any]:
        """Get an item by its key with a consistent read.

        Raises:
            NotFoundError: If there is no item with the key.

        """
        try:
            response = self.table.get_item(**self._build_get_kwargs(key=key))
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(exc, operation=operation, key=key) from exc

        item = response.get("Item")
        if item is None:
            raise NotFoundError(operation=operation, key=key)
        return item

    def _put_item(self, put_kwargs: dict[str, Any], *, operation: str) -> None:
        try:
            self.table.put_item(**put_kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(
                exc, operation=operation, key=self._item_key(put_kwargs["Item"])
            ) from exc

    def _update_item(self, update_kwargs: dict[str, Any], *, operation: str) -> None:
        try:
            self.table.update_item(**update_kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(
                exc, operation=operation, key=update_kwargs["Key"]
            ) from exc

    def _update_existing_item(self, update_kwargs: dict[str, Any], *, operation: str) -> None:
        """Update an item that must already exist.

        Raises:
            NotFoundError: If the item does not exist.

        """
        try:
            self._update_item(update_kwargs, operation=operation)
        except ConditionCheckFailedError as exc:
            raise NotFoundError(
                operation=operation, key=exc.key, original_error=exc.original_error
            ) from exc

    def _delete_item(self, *, key: DynamoDBKey, operation: str) -> None:
        try:
            self.table.delete_item(**self._build_delete_kwargs(key=key))
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(exc, operation=operation, key=key) from exc

    def _query(
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
            response = self.table.query(**query_kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(exc, operation=operation) from exc

        last_evaluated_key: LastEvaluatedKey | None = response.get("LastEvaluatedKey")  # type: ignore[assignment]
        return QueryResult(
            items=list(response.get("Items", [])),
            last_evaluated_key=last_evaluated_key,
        )

    def _query_all(self, *, partition_key: str, operation: str) -> list[dict[str, Any]]:
        """Read every item of a partition, following pagination to the end.

        A failure on any page raises; partial results are never returned.
        """
        all_items: list[dict[str, Any]] = []
        last_key: LastEvaluatedKey | None = None

        while True:
            items, last_key = self._query(
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

    def _transact_write(
        self,
        items: list[TransactItem],
        *,
        operation: str,
        key: DynamoDBKey | None = None,
    ) -> None:
        """Write every item or none of them."""
        try:
            self.table.meta.client.transact_write_items(TransactItems=items)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate_error(exc, operation=operation, key=key) from exc


class UserStore(_SyncStoreBase, _UserStoreBase[SyncTable]):
    """Stores users and their side of organisation memberships.

    Example:
        store = UserStore(table)
        store.put(User(id="homer@example.com", created_at=now))
        details = store.get_details("homer@example.com")

    """

    def put(self, user: User) -> None:
        """Create or replace a user's profile."""
        record = UserRecord.from_user(user)
        self._put_item(self._build_put_kwargs(record=record), operation="UserStore.put")
        log.info("user.put", user_id=user.id)

    def get(self, user_id: str) -> User:
        """Get a user's profile.

        Raises:
            NotFoundError: If the user does not exist.
            DecodeError: If the stored record is malformed.

        """
        item = self._get_item(key=user_key(user_id.lower()), operation="UserStore.get")
        return UserRecord.decode(item).to_user()

    def get_details(self, user_id: str) -> UserDetails:
        """Get a user with their organisations and pending invitations.

        Raises:
            DecodeError: If the user record is missing, which includes an empty
                partition, or any record is malformed.

        """
        operation = "UserStore.get_details"
        partition_key = user_partition_key(user_id.lower())
        items = self._query_all(partition_key=partition_key, operation=operation)
        return build_user_details(items)

    def invite(
        self,
        user: User,
        organisation: Organisation,
        groups: Iterable[str] = (),
        service_groups: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        """Invite a user to an organisation and, optionally, to groups.

        The member record and the pending membership are written atomically.

        Raises:
            TransactionAbortedError: If either record could not be written.

        """
        items = self._build_invite_items(user, organisation, groups, service_groups)
        self._transact_write(
            items,
            operation="UserStore.invite",
            key=organisation_member_key(organisation.id, user.id),
        )
        log.info("user.invited", user_id=user.id, organisation_id=organisation.id)

    def accept_invite(self, user: User, organisation: Organisation) -> None:
        """Accept an invitation; only the user's side of it is updated.

        Accepting again moves `acceptedAt` to the current time.

        Raises:
            NotFoundError: If there is no such invitation.

        """
        self._update_existing_item(
            self._build_accept_invite_kwargs(user, organisation),
            operation="UserStore.accept_invite",
        )
        log.info("user.invite_accepted", user_id=user.id, organisation_id=organisation.id)

    def reject_invite(self, user: User, organisation: Organisation) -> None:
        """Reject an invitation, removing both sides of it atomically."""
        self._transact_write(
            self._build_reject_invite_items(user, organisation),
            operation="UserStore.reject_invite",
            key=organisation_member_key(organisation.id, user.id),
        )
        log.info("user.invite_rejected", user_id=user.id, organisation_id=organisation.id)


class OrganisationStore(_SyncStoreBase, _OrganisationStoreBase[SyncTable]):
    """Stores organisations, their members, groups and services.

    Example:
        store = OrganisationStore(table)
        organisation_id = store.create(owner, "Springfield Nuclear")
        store.add_user_to_organisation_groups(organisation_id, homer, "safety")
        details = store.get_details(organisation_id)

    """

    def create(self, owner: User, name: str) -> str:
        """Create an organisation owned by `owner`.

        The organisation record, the owner's member record (in the owner
        group) and the owner's accepted membership are written atomically.

        Returns:
            The new organisation's ID.

        Raises:
            AlreadyExistsError: If the generated ID is already taken.
            TransactionAbortedError: If any record could not be written.

        """
        operation = "OrganisationStore.create"
        organisation, items = self._build_create_items(owner, name)
        key = organisation_key(organisation.id)
        try:
            self._transact_write(items, operation=operation, key=key)
        except TransactionAbortedError as exc:
            if not self._is_creation_conflict(exc):
                raise
            raise AlreadyExistsError(
                operation=operation, key=key, original_error=exc.original_error
            ) from exc
        log.info("organisation.created", organisation_id=organisation.id, owner=owner.id)
        return organisation.id

    def put(self, organisation: Organisation) -> None:
        """Create or rename an organisation."""
        record = OrganisationRecord.from_organisation(organisation)
        self._put_item(self._build_put_kwargs(record=record), operation="OrganisationStore.put")
        log.info("organisation.put", organisation_id=organisation.id)

    def get(self, organisation_id: str) -> Organisation:
        """Get an organisation.

        Raises:
            NotFoundError: If the organisation does not exist.

        """
        item = self._get_item(
            key=organisation_key(organisation_id), operation="OrganisationStore.get"
        )
        return OrganisationRecord.decode(item).to_organisation()

    def get_details(self, organisation_id: str) -> OrganisationDetails:
        """Get an organisation with its groups and services.

        Raises:
            DecodeError: If the organisation record is missing, which includes an
                empty partition, or any record is malformed.

        """
        operation = "OrganisationStore.get_details"
        items = self._query_all(
            partition_key=organisation_partition_key(organisation_id), operation=operation
        )
        return build_organisation_details(items)

    def create_service(self, organisation_id: str, name: str) -> str:
        """Create a service in an organisation.

        Returns:
            The new service's ID.

        Raises:
            AlreadyExistsError: If the generated ID is already taken.

        """
        operation = "OrganisationStore.create_service"
        service, put_kwargs = self._build_create_service_kwargs(organisation_id, name)
        try:
            self._put_item(put_kwargs, operation=operation)
        except ConditionCheckFailedError as exc:
            raise AlreadyExistsError(
                operation=operation, key=exc.key, original_error=exc.original_error
            ) from exc
        log.info("service.created", organisation_id=organisation_id, service_id=service.id)
        return service.id

    def put_service(self, organisation_id: str, service: Service) -> None:
        """Create or rename a service. Group memberships are not touched."""
        record = OrganisationServiceRecord.from_service(organisation_id, service)
        self._put_item(
            self._build_put_kwargs(record=record), operation="OrganisationStore.put_service"
        )
        log.info("service.put", organisation_id=organisation_id, service_id=service.id)

    def delete_service(self, organisation_id: str, service_id: str) -> None:
        """Delete a service.

        Members' group entries for the service are left in place.
        """
        self._delete_item(
            key=organisation_service_key(organisation_id, service_id),
            operation="OrganisationStore.delete_service",
        )
        log.info("service.deleted", organisation_id=organisation_id, service_id=service_id)

    def add_user_to_organisation_groups(
        self, organisation_id: str, user: User, *groups: str
    ) -> None:
        self.add_user_to_groups(organisation_id, user, groups)

    def add_user_to_service_groups(
        self, organisation_id: str, user: User, service_id: str, *groups: str
    ) -> None:
        self.add_user_to_groups(organisation_id, user, service_groups={service_id: groups})

    def add_user_to_groups(
        self,
        organisation_id: str,
        user: User,
        groups: Iterable[str] = (),
        service_groups: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        """Add a user to organisation and service groups.

        Creates the member record if needed and refreshes the user's profile
        fields on it. Groups are merged into the stored set, so concurrent
        additions to different groups are all kept.
        """
        group_set = GroupSet(groups, service_groups)
        self._update_item(
            self._build_add_member_kwargs(organisation_id, user, group_set),
            operation="OrganisationStore.add_user_to_groups",
        )
        log.info(
            "member.groups_added",
            organisation_id=organisation_id,
            user_id=user.id,
            groups=sorted(group_set.encode()),
        )

    def remove_user_from_organisation_groups(
        self, organisation_id: str, user_id: str, *groups: str
    ) -> None:
        self.remove_user_from_groups(organisation_id, user_id, groups)

    def remove_user_from_service_groups(
        self, organisation_id: str, user_id: str, service_id: str, *groups: str
    ) -> None:
        self.remove_user_from_groups(organisation_id, user_id, service_groups={service_id: groups})

    def remove_user_from_groups(
        self,
        organisation_id: str,
        user_id: str,
        groups: Iterable[str] = (),
        service_groups: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        """Remove a user from organisation and service groups.

        The member record stays, even when no groups are left.

        Raises:
            EmptyUpdateError: If no groups are given.
            NotFoundError: If the user is not a member.

        """
        group_set = GroupSet(groups, service_groups)
        self._update_existing_item(
            self._build_remove_member_groups_kwargs(organisation_id, user_id, group_set),
            operation="OrganisationStore.remove_user_from_groups",
        )
        log.info(
            "member.groups_removed",
            organisation_id=organisation_id,
            user_id=user_id.lower(),
            groups=sorted(group_set.encode()),
        )

    def remove_user(self, organisation_id: str, user_id: str) -> None:
        """Delete a user's member record."""
        self._delete_item(
            key=organisation_member_key(organisation_id, user_id.lower()),
            operation="OrganisationStore.remove_user",
        )
        log.info("member.removed", organisation_id=organisation_id, user_id=user_id.lower())

    def update_user_details(self, organisation_id: str, user: User) -> None:
        """Refresh the profile fields on a member record, leaving groups alone.

        Raises:
            NotFoundError: If the user is not a member.

        """
        self._update_existing_item(
            self._build_update_user_details_kwargs(organisation_id, user),
            operation="OrganisationStore.update_user_details",
        )
        log.info("member.details_updated", organisation_id=organisation_id, user_id=user.id)


__all__ = [
    "OrganisationStore",
    "UserStore",
]
