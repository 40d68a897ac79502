"""Key layout for the identity table.

Every record lives in one table keyed by a partition key attribute (`id`) and a
sort key attribute (`rng`). Key values are built by joining a stable record
prefix and the entity identifier with `/`, so they can always be reproduced
from entity IDs alone.

Partition layout:
    user/<email>
        user                                  the user profile
        userOrganisation/<organisationId>     one per invitation or membership

    organisation/<organisationId>
        organisation                          the organisation itself
        organisationGroupMember/<email>       one per member
        organisationService/<serviceId>       one per service

Type aliases:
    KeyValue: The types allowed as partition key or sort key values in DynamoDB.

    DynamoDBKey: A dictionary mapping attribute names to key values. This is the
        format required by boto3 operations like get_item, update_item, delete_item.
        Example: {"id": "user/homer@example.com", "rng": "user"}

    LastEvaluatedKey: The pagination token returned by query() operations.
        Pass this to ExclusiveStartKey to continue pagination.
"""

from decimal import Decimal
from typing import TypeAlias

from typing_extensions import TypeAliasType

KeyValue: TypeAlias = str | bytes | bytearray | int | Decimal
DynamoDBKey: TypeAlias = dict[str, KeyValue]
LastEvaluatedKey = TypeAliasType("LastEvaluatedKey", DynamoDBKey)

PARTITION_KEY_ATTRIBUTE = "id"
SORT_KEY_ATTRIBUTE = "rng"
SEPARATOR = "/"

USER_RECORD = "user"
USER_ORGANISATION_RECORD = "userOrganisation"
ORGANISATION_RECORD = "organisation"
ORGANISATION_MEMBER_RECORD = "organisationMember"
ORGANISATION_SERVICE_RECORD = "organisationService"

# Member sort keys do not share the member record kind name.
ORGANISATION_MEMBER_SORT_PREFIX = "organisationGroupMember"


def _join(*parts: str) -> str:
    return SEPARATOR.join(parts)


def user_partition_key(email: str) -> str:
    return _join(USER_RECORD, email)


def user_sort_key() -> str:
    return USER_RECORD


def user_organisation_sort_key(organisation_id: str) -> str:
    return _join(USER_ORGANISATION_RECORD, organisation_id)


def organisation_partition_key(organisation_id: str) -> str:
    return _join(ORGANISATION_RECORD, organisation_id)


def organisation_sort_key() -> str:
    return ORGANISATION_RECORD


def organisation_member_sort_key(email: str) -> str:
    return _join(ORGANISATION_MEMBER_SORT_PREFIX, email)


def organisation_service_sort_key(service_id: str) -> str:
    return _join(ORGANISATION_SERVICE_RECORD, service_id)


def build_key(partition_key: str, sort_key: str) -> DynamoDBKey:
    """Build the DynamoDB key dictionary for a partition and sort key pair."""
    return {PARTITION_KEY_ATTRIBUTE: partition_key, SORT_KEY_ATTRIBUTE: sort_key}


def user_key(email: str) -> DynamoDBKey:
    return build_key(user_partition_key(email), user_sort_key())


def user_organisation_key(email: str, organisation_id: str) -> DynamoDBKey:
    return build_key(user_partition_key(email), user_organisation_sort_key(organisation_id))


def organisation_key(organisation_id: str) -> DynamoDBKey:
    return build_key(organisation_partition_key(organisation_id), organisation_sort_key())


def organisation_member_key(organisation_id: str, email: str) -> DynamoDBKey:
    return build_key(
        organisation_partition_key(organisation_id),
        organisation_member_sort_key(email),
    )


def organisation_service_key(organisation_id: str, service_id: str) -> DynamoDBKey:
    return build_key(
        organisation_partition_key(organisation_id),
        organisation_service_sort_key(service_id),
    )


__all__ = [
    "ORGANISATION_MEMBER_RECORD",
    "ORGANISATION_RECORD",
    "ORGANISATION_SERVICE_RECORD",
    "PARTITION_KEY_ATTRIBUTE",
    "SORT_KEY_ATTRIBUTE",
    "USER_ORGANISATION_RECORD",
    "USER_RECORD",
    "DynamoDBKey",
    "KeyValue",
    "LastEvaluatedKey",
    "build_key",
    "organisation_key",
    "organisation_member_key",
    "organisation_member_sort_key",
    "organisation_partition_key",
    "organisation_service_key",
    "organisation_service_sort_key",
    "organisation_sort_key",
    "user_key",
    "user_organisation_key",
    "user_organisation_sort_key",
    "user_partition_key",
    "user_sort_key",
]
