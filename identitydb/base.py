"""Shared base functionality for IdentityDB stores.

This module holds everything the synchronous and asynchronous stores have in
common: building request kwargs for every DynamoDB call, and turning each
store operation into the records and requests it needs. The sync and async
stores only execute the requests, so both flavours always write exactly the
same items.
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Generic, NamedTuple, TypeVar
from uuid import uuid4

from botocore.exceptions import BotoCoreError, ClientError

from identitydb.conditions import And, Condition
from identitydb.entities import GROUP_OWNER, Organisation, Service, User
from identitydb.exceptions import (
    EmptyUpdateError,
    InvalidKeySchemaError,
    TransactionAbortedError,
    wrap_client_error,
    wrap_transport_error,
)
from identitydb.expressions import ExpressionBuilder, SetUpdateMapping, UpdateMapping
from identitydb.groupset import GroupSet
from identitydb.keys import (
    PARTITION_KEY_ATTRIBUTE,
    SORT_KEY_ATTRIBUTE,
    DynamoDBKey,
    LastEvaluatedKey,
    build_key,
    organisation_member_key,
    user_organisation_key,
)
from identitydb.records import (
    OrganisationMemberRecord,
    OrganisationRecord,
    OrganisationServiceRecord,
    Record,
    UserOrganisationRecord,
)

if TYPE_CHECKING:
    from mypy_boto3_dynamodb.service_resource import Table as SyncTable
    from mypy_boto3_dynamodb.type_defs import (
        KeySchemaElementTypeDef as SyncKeySchemaElementTypeDef,
    )
    from types_aiobotocore_dynamodb.service_resource import Table as AsyncTable
    from types_aiobotocore_dynamodb.type_defs import (
        KeySchemaElementTypeDef as AsyncKeySchemaElementTypeDef,
    )
else:
    SyncTable = Any
    AsyncTable = Any
    SyncKeySchemaElementTypeDef = Any
    AsyncKeySchemaElementTypeDef = Any


class QueryResult(NamedTuple):
    """One page of a partition query.

    Attributes:
        items: The raw items of the page.
        last_evaluated_key: Pagination token for the next page, if any.

    """

    items: list[dict[str, Any]]
    last_evaluated_key: LastEvaluatedKey | None


Table = TypeVar("Table", SyncTable, AsyncTable)
KeySchema = SyncKeySchemaElementTypeDef | AsyncKeySchemaElementTypeDef

Clock = Callable[[], datetime]
IdFactory = Callable[[], str]
TransactItem = dict[str, Any]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    return str(uuid4())


class _StoreBase(Generic[Table]):
    """Internal base class with request building shared by every store.

    Attributes:
        table: The DynamoDB Table resource.
        now: Returns the current time; timestamps written by the store use it.
        new_id: Returns a new unique identifier for organisations and services.

    """

    def __init__(
        self,
        table: Table,
        *,
        now: Clock = utc_now,
        new_id: IdFactory = new_uuid,
    ) -> None:
        self.table = table
        self.now = now
        self.new_id = new_id

    @property
    def _table_name(self) -> str:
        return self.table.name  # type: ignore[no-any-return]

    @staticmethod
    def _parse_key_schema(*, key_schema: Sequence[KeySchema]) -> tuple[str, str | None]:
        """Parse a DynamoDB key schema into partition and sort key attributes.

        Raises:
            InvalidKeySchemaError: If no partition key is present.

        """
        partition_key_attribute: str | None = None
        sort_key_attribute: str | None = None

        for key_element in key_schema:
            if key_element["KeyType"] == "HASH":
                partition_key_attribute = key_element["AttributeName"]
            elif key_element["KeyType"] == "RANGE":
                sort_key_attribute = key_element["AttributeName"]

        if partition_key_attribute is None:
            raise InvalidKeySchemaError()

        return partition_key_attribute, sort_key_attribute

    @classmethod
    def _validate_key_schema(cls, key_schema: Sequence[KeySchema]) -> None:
        """Check that the table is keyed by `id` and `rng`.

        Raises:
            InvalidKeySchemaError: For any other key schema.

        """
        keys = cls._parse_key_schema(key_schema=key_schema)
        if keys != (PARTITION_KEY_ATTRIBUTE, SORT_KEY_ATTRIBUTE):
            raise InvalidKeySchemaError(
                f"Invalid key schema: expected ({PARTITION_KEY_ATTRIBUTE!r}, "
                f"{SORT_KEY_ATTRIBUTE!r}), got {keys!r}"
            )

    def _translate_error(
        self,
        error: Exception,
        *,
        operation: str,
        key: DynamoDBKey | None = None,
    ) -> Exception:
        """Map a botocore exception onto the IdentityDB hierarchy.

        Exceptions that did not come from botocore are returned unchanged.
        """
        if isinstance(error, ClientError):
            return wrap_client_error(
                error, operation=operation, key=key, table_name=self._table_name
            )
        if isinstance(error, BotoCoreError):
            return wrap_transport_error(error, operation=operation, key=key)
        return error

    @staticmethod
    def _item_key(item: Mapping[str, Any]) -> DynamoDBKey:
        return build_key(item[PARTITION_KEY_ATTRIBUTE], item[SORT_KEY_ATTRIBUTE])

    @staticmethod
    def _build_get_kwargs(*, key: DynamoDBKey) -> dict[str, Any]:
        return {"Key": key, "ConsistentRead": True}

    @staticmethod
    def _build_put_kwargs(*, record: Record, condition: Condition | None = None) -> dict[str, Any]:
        """Build kwargs dictionary for put_item operation.

        Args:
            record: The record to write.
            condition: Optional condition for conditional save.

        """
        put_kwargs: dict[str, Any] = {"Item": record.to_item()}

        if condition is not None:
            builder = ExpressionBuilder()
            put_kwargs["ConditionExpression"] = builder.build_condition_expression(condition)
            put_kwargs["ExpressionAttributeNames"] = builder.attribute_names
            if builder.attribute_values:
                put_kwargs["ExpressionAttributeValues"] = builder.attribute_values

        return put_kwargs

    @staticmethod
    def _build_update_kwargs(
        *,
        key: DynamoDBKey,
        updates: UpdateMapping | None = None,
        add: SetUpdateMapping | None = None,
        delete: SetUpdateMapping | None = None,
        condition: Condition | None = None,
    ) -> dict[str, Any]:
        """Build kwargs dictionary for update_item operation.

        Args:
            key: The DynamoDB key identifying the item.
            updates: Attributes to SET.
            add: String-set attributes to add elements to.
            delete: String-set attributes to remove elements from.
            condition: Optional condition for conditional update.

        Raises:
            EmptyUpdateError: If there is nothing to update.

        """
        builder = ExpressionBuilder()
        update_expression = builder.build_update_expression(updates, add=add, delete=delete)

        update_kwargs: dict[str, Any] = {}

        if condition is not None:
            update_kwargs["ConditionExpression"] = builder.build_condition_expression(
                condition
            )

        update_kwargs |= {
            "Key": key,
            "UpdateExpression": update_expression,
            "ExpressionAttributeNames": builder.attribute_names,
            "ExpressionAttributeValues": builder.attribute_values,
        }

        return update_kwargs

    @staticmethod
    def _build_delete_kwargs(*, key: DynamoDBKey) -> dict[str, Any]:
        return {"Key": key}

    @staticmethod
    def _build_query_kwargs(
        *,
        partition_key: str,
        exclusive_start_key: LastEvaluatedKey | None,
    ) -> dict[str, Any]:
        """Build kwargs dictionary for a consistent query of one partition."""
        builder = ExpressionBuilder()

        pk_placeholder = builder._get_name_placeholder(PARTITION_KEY_ATTRIBUTE)
        pk_value_placeholder = builder._get_value_placeholder(partition_key)

        query_kwargs: dict[str, Any] = {
            "KeyConditionExpression": f"{pk_placeholder} = {pk_value_placeholder}",
            "ExpressionAttributeNames": builder.attribute_names,
            "ExpressionAttributeValues": builder.attribute_values,
            "ConsistentRead": True,
        }

        if exclusive_start_key is not None:
            query_kwargs["ExclusiveStartKey"] = exclusive_start_key

        return query_kwargs

    def _build_transact_put(
        self,
        *,
        record: Record,
        condition: Condition | None = None,
    ) -> TransactItem:
        put = self._build_put_kwargs(record=record, condition=condition)
        put["TableName"] = self._table_name
        return {"Put": put}

    def _build_transact_delete(self, *, key: DynamoDBKey) -> TransactItem:
        return {"Delete": {"TableName": self._table_name, "Key": key}}


class _UserStoreBase(_StoreBase[Table]):
    """Request construction for UserStore and AsyncUserStore."""

    def _build_invite_items(
        self,
        user: User,
        organisation: Organisation,
        groups: Iterable[str],
        service_groups: Mapping[str, Iterable[str]] | None,
    ) -> list[TransactItem]:
        member = OrganisationMemberRecord.from_member(
            organisation.id, user, GroupSet(groups, service_groups)
        )
        membership = UserOrganisationRecord.from_membership(
            user, organisation, invited_at=self.now()
        )
        return [
            self._build_transact_put(record=member),
            self._build_transact_put(record=membership),
        ]

    def _build_accept_invite_kwargs(
        self, user: User, organisation: Organisation
    ) -> dict[str, Any]:
        return self._build_update_kwargs(
            key=user_organisation_key(user.id, organisation.id),
            updates={UserOrganisationRecord.attr.accepted_at: self.now()},
            condition=UserOrganisationRecord.attr.sort_key.exists(),
        )

    def _build_reject_invite_items(
        self, user: User, organisation: Organisation
    ) -> list[TransactItem]:
        return [
            self._build_transact_delete(key=organisation_member_key(organisation.id, user.id)),
            self._build_transact_delete(key=user_organisation_key(user.id, organisation.id)),
        ]


class _OrganisationStoreBase(_StoreBase[Table]):
    """Request construction for OrganisationStore and AsyncOrganisationStore."""

    def _build_create_items(
        self, owner: User, name: str
    ) -> tuple[Organisation, list[TransactItem]]:
        """Build the records written when an organisation is created.

        The organisation record must not already exist; the owner becomes a
        member of the owner group and an accepted member on their own side.
        """
        organisation = Organisation(id=self.new_id(), name=name)
        now = self.now()

        not_overwrite = And(
            OrganisationRecord.attr.partition_key.not_exists(),
            OrganisationRecord.attr.sort_key.not_exists(),
        )
        member = OrganisationMemberRecord.from_member(
            organisation.id, owner, GroupSet([GROUP_OWNER])
        )
        membership = UserOrganisationRecord.from_membership(
            owner, organisation, invited_at=now, accepted_at=now
        )
        return organisation, [
            self._build_transact_put(
                record=OrganisationRecord.from_organisation(organisation),
                condition=not_overwrite,
            ),
            self._build_transact_put(record=member),
            self._build_transact_put(record=membership),
        ]

    @staticmethod
    def _is_creation_conflict(error: TransactionAbortedError) -> bool:
        """Whether the organisation record's not-exists precondition failed."""
        return error.reasons[:1] == ["ConditionalCheckFailed"]

    def _build_create_service_kwargs(
        self, organisation_id: str, name: str
    ) -> tuple[Service, dict[str, Any]]:
        service = Service(id=self.new_id(), name=name)
        record = OrganisationServiceRecord.from_service(organisation_id, service)
        return service, self._build_put_kwargs(
            record=record,
            condition=OrganisationServiceRecord.attr.partition_key.not_exists(),
        )

    def _build_add_member_kwargs(
        self, organisation_id: str, user: User, groups: GroupSet
    ) -> dict[str, Any]:
        """Upsert a member record, merging the groups into the stored set."""
        member = OrganisationMemberRecord.from_member(organisation_id, user, groups)
        attr = OrganisationMemberRecord.attr
        updates = {
            attr.record_kind: member.record_kind,
            attr.schema_version: member.schema_version,
            attr.organisation_id: member.organisation_id,
            **self._profile_updates(member),
        }
        return self._build_update_kwargs(
            key=member.key,
            updates=updates,
            add={attr.groups: groups.encode()},
        )

    def _build_remove_member_groups_kwargs(
        self, organisation_id: str, user_id: str, groups: GroupSet
    ) -> dict[str, Any]:
        """Remove groups from an existing member record.

        Raises:
            EmptyUpdateError: If no groups are given.

        """
        tags = groups.encode()
        if not tags:
            raise EmptyUpdateError()
        attr = OrganisationMemberRecord.attr
        return self._build_update_kwargs(
            key=organisation_member_key(organisation_id, user_id.lower()),
            delete={attr.groups: tags},
            condition=attr.sort_key.exists(),
        )

    def _build_update_user_details_kwargs(
        self, organisation_id: str, user: User
    ) -> dict[str, Any]:
        member = OrganisationMemberRecord.from_member(organisation_id, user)
        return self._build_update_kwargs(
            key=member.key,
            updates=self._profile_updates(member),
            condition=OrganisationMemberRecord.attr.sort_key.exists(),
        )

    @staticmethod
    def _profile_updates(member: OrganisationMemberRecord) -> dict[Any, Any]:
        attr = OrganisationMemberRecord.attr
        return {
            attr.email: member.email,
            attr.first_name: member.first_name,
            attr.last_name: member.last_name,
            attr.phone: member.phone,
            attr.created_at: member.created_at,
        }


__all__ = [
    "AsyncTable",
    "Clock",
    "IdFactory",
    "QueryResult",
    "SyncTable",
    "new_uuid",
    "utc_now",
]
