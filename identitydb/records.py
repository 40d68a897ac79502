"""Record encoding for the identity table.

Each logical entity or relationship is stored as one record. Every record
carries the same header:

    id   partition key
    rng  sort key
    typ  record kind, used to pick the decoder
    v    schema version, currently always 0

followed by a kind-specific payload. Records are Pydantic models whose field
aliases are the stored attribute names, so `Record.to_item()` produces a
boto3-ready item and `decode_record(item)` reverses it.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic import ValidationError as PydanticValidationError
from typing_extensions import Self

from identitydb.entities import Organisation, Service, User
from identitydb.exceptions import DecodeError
from identitydb.fields import AttrDescriptor
from identitydb.groupset import GroupSet
from identitydb.keys import (
    ORGANISATION_MEMBER_RECORD,
    ORGANISATION_RECORD,
    ORGANISATION_SERVICE_RECORD,
    USER_ORGANISATION_RECORD,
    USER_RECORD,
    DynamoDBKey,
    build_key,
    organisation_member_sort_key,
    organisation_partition_key,
    organisation_service_sort_key,
    organisation_sort_key,
    user_organisation_sort_key,
    user_partition_key,
    user_sort_key,
)

RECORD_KIND_ATTRIBUTE = "typ"
SCHEMA_VERSION = 0


class _WireModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        arbitrary_types_allowed=True,
    )


class Record(_WireModel):
    """Header shared by every record kind.

    Subclasses set `kind` and narrow `record_kind` to the matching literal.
    """

    kind: ClassVar[str]
    attr: ClassVar[AttrDescriptor] = AttrDescriptor()

    partition_key: str = Field(alias="id")
    sort_key: str = Field(alias="rng")
    record_kind: str = Field(alias=RECORD_KIND_ATTRIBUTE)
    schema_version: int = Field(default=SCHEMA_VERSION, alias="v")

    @property
    def key(self) -> DynamoDBKey:
        return build_key(self.partition_key, self.sort_key)

    def to_item(self) -> dict[str, Any]:
        """Encode the record as a DynamoDB item."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def decode(cls, item: Mapping[str, Any]) -> Self:
        """Decode a DynamoDB item of this record kind.

        Raises:
            DecodeError: If the item does not have the shape of this kind.

        """
        try:
            return cls.model_validate(item)
        except PydanticValidationError as exc:
            raise DecodeError(str(exc), record_kind=cls.kind) from exc


class _UserFields(_WireModel):
    email: str
    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    phone: str = ""
    created_at: datetime = Field(alias="createdAt")

    def to_user(self) -> User:
        return User(
            id=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            phone=self.phone,
            created_at=self.created_at,
        )

    @staticmethod
    def _user_fields(user: User) -> dict[str, Any]:
        return {
            "email": user.id,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "phone": user.phone,
            "created_at": user.created_at,
        }


class _OrganisationFields(_WireModel):
    organisation_id: str = Field(alias="organisationId")
    organisation_name: str = Field(alias="organisationName")

    def to_organisation(self) -> Organisation:
        return Organisation(id=self.organisation_id, name=self.organisation_name)


class UserRecord(_UserFields, Record):
    """The user profile: `user/<email>`, `user`."""

    kind: ClassVar[str] = USER_RECORD

    record_kind: Literal["user"] = Field(default=USER_RECORD, alias=RECORD_KIND_ATTRIBUTE)

    @classmethod
    def from_user(cls, user: User) -> "UserRecord":
        return cls(
            partition_key=user_partition_key(user.id),
            sort_key=user_sort_key(),
            **cls._user_fields(user),
        )


class UserOrganisationRecord(_OrganisationFields, Record):
    """The user side of an invitation or membership.

    Stored as `user/<email>`, `userOrganisation/<organisationId>`. A null
    `acceptedAt` marks a pending invitation.
    """

    kind: ClassVar[str] = USER_ORGANISATION_RECORD

    record_kind: Literal["userOrganisation"] = Field(
        default=USER_ORGANISATION_RECORD, alias=RECORD_KIND_ATTRIBUTE
    )
    email: str
    invited_at: datetime = Field(alias="invitedAt")
    accepted_at: datetime | None = Field(default=None, alias="acceptedAt")

    @classmethod
    def from_membership(
        cls,
        user: User,
        organisation: Organisation,
        *,
        invited_at: datetime,
        accepted_at: datetime | None = None,
    ) -> "UserOrganisationRecord":
        return cls(
            partition_key=user_partition_key(user.id),
            sort_key=user_organisation_sort_key(organisation.id),
            email=user.id,
            organisation_id=organisation.id,
            organisation_name=organisation.name,
            invited_at=invited_at,
            accepted_at=accepted_at,
        )


class OrganisationRecord(_OrganisationFields, Record):
    """The organisation: `organisation/<organisationId>`, `organisation`."""

    kind: ClassVar[str] = ORGANISATION_RECORD

    record_kind: Literal["organisation"] = Field(
        default=ORGANISATION_RECORD, alias=RECORD_KIND_ATTRIBUTE
    )

    @classmethod
    def from_organisation(cls, organisation: Organisation) -> "OrganisationRecord":
        return cls(
            partition_key=organisation_partition_key(organisation.id),
            sort_key=organisation_sort_key(),
            organisation_id=organisation.id,
            organisation_name=organisation.name,
        )


class OrganisationMemberRecord(_UserFields, Record):
    """A member of an organisation and the groups they belong to.

    Stored as `organisation/<organisationId>`, `organisationGroupMember/<email>`,
    with a copy of the user's profile fields. The `groups` attribute is the
    encoded GroupSet; it is left out of the item when empty.
    """

    kind: ClassVar[str] = ORGANISATION_MEMBER_RECORD

    record_kind: Literal["organisationMember"] = Field(
        default=ORGANISATION_MEMBER_RECORD, alias=RECORD_KIND_ATTRIBUTE
    )
    organisation_id: str = Field(alias="organisationId")
    groups: GroupSet = Field(default_factory=GroupSet)

    @field_validator("groups", mode="before")
    @classmethod
    def _decode_groups(cls, value: Any) -> GroupSet:
        if isinstance(value, GroupSet):
            return value
        if value is not None and not isinstance(value, (set, frozenset, list, tuple)):
            raise DecodeError("groups must be a set of strings")
        if any(not isinstance(tag, str) for tag in value or ()):
            raise DecodeError("groups must be a set of strings")
        return GroupSet.decode(value)

    @field_serializer("groups")
    def _encode_groups(self, groups: GroupSet) -> list[str]:
        return sorted(groups.encode())

    @classmethod
    def from_member(
        cls,
        organisation_id: str,
        user: User,
        groups: GroupSet | None = None,
    ) -> "OrganisationMemberRecord":
        return cls(
            partition_key=organisation_partition_key(organisation_id),
            sort_key=organisation_member_sort_key(user.id),
            organisation_id=organisation_id,
            groups=groups or GroupSet(),
            **cls._user_fields(user),
        )

    def to_item(self) -> dict[str, Any]:
        item = super().to_item()
        # Stored as a string set, which DynamoDB does not allow to be empty.
        tags = self.groups.encode()
        if tags:
            item["groups"] = tags
        else:
            item.pop("groups", None)
        return item


class OrganisationServiceRecord(Record):
    """A service: `organisation/<organisationId>`, `organisationService/<serviceId>`."""

    kind: ClassVar[str] = ORGANISATION_SERVICE_RECORD

    record_kind: Literal["organisationService"] = Field(
        default=ORGANISATION_SERVICE_RECORD, alias=RECORD_KIND_ATTRIBUTE
    )
    service_id: str = Field(alias="serviceId")
    service_name: str = Field(alias="serviceName")

    @classmethod
    def from_service(cls, organisation_id: str, service: Service) -> "OrganisationServiceRecord":
        return cls(
            partition_key=organisation_partition_key(organisation_id),
            sort_key=organisation_service_sort_key(service.id),
            service_id=service.id,
            service_name=service.name,
        )

    def to_service(self) -> Service:
        return Service(id=self.service_id, name=self.service_name)


RECORD_TYPES: dict[str, type[Record]] = {
    record_cls.kind: record_cls
    for record_cls in (
        UserRecord,
        UserOrganisationRecord,
        OrganisationRecord,
        OrganisationMemberRecord,
        OrganisationServiceRecord,
    )
}


def decode_record(item: Mapping[str, Any]) -> Record | None:
    """Decode an item by its record kind.

    Returns:
        The decoded record, or None if the item has no kind or a kind this
        version does not know.

    Raises:
        DecodeError: If the item is of a known kind but malformed.

    """
    kind = item.get(RECORD_KIND_ATTRIBUTE)
    if not isinstance(kind, str):
        return None
    record_cls = RECORD_TYPES.get(kind)
    if record_cls is None:
        return None
    return record_cls.decode(item)


def decode_records(items: Iterable[Mapping[str, Any]]) -> list[Record]:
    """Decode every item of a known kind, skipping the rest."""
    records = (decode_record(item) for item in items)
    return [record for record in records if record is not None]


__all__ = [
    "RECORD_KIND_ATTRIBUTE",
    "RECORD_TYPES",
    "SCHEMA_VERSION",
    "OrganisationMemberRecord",
    "OrganisationRecord",
    "OrganisationServiceRecord",
    "Record",
    "UserOrganisationRecord",
    "UserRecord",
    "decode_record",
    "decode_records",
]
