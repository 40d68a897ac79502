"""Rebuild domain objects from the records of one partition.

The store only hands back flat pages of records; joining them happens here.
Both builders run in two phases: a scan that classifies every record into
per-kind maps, then a finalize step that resolves cross references. Record
order within the input does not affect the result.

The input must be the complete contents of the partition. A partially read
partition must never be passed in.
"""

from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from identitydb.entities import (
    GroupName,
    Invitation,
    Organisation,
    OrganisationDetails,
    Service,
    User,
    UserDetails,
)
from identitydb.exceptions import DecodeError
from identitydb.keys import ORGANISATION_RECORD, USER_RECORD
from identitydb.records import (
    RECORD_KIND_ATTRIBUTE,
    OrganisationMemberRecord,
    OrganisationRecord,
    OrganisationServiceRecord,
    Record,
    UserOrganisationRecord,
    UserRecord,
    decode_record,
)

log = structlog.get_logger(__name__)

Item = Mapping[str, Any]


def _decode_known(items: Iterable[Item]) -> list[Record]:
    records: list[Record] = []
    for item in items:
        record = decode_record(item)
        if record is None:
            log.debug(
                "projection.record_skipped",
                record_kind=item.get(RECORD_KIND_ATTRIBUTE),
                sort_key=item.get("rng"),
            )
            continue
        records.append(record)
    return records


def build_user_details(items: Iterable[Item]) -> UserDetails:
    """Build a UserDetails from every record in a `user/<email>` partition.

    Accepted memberships become `organisations`; pending ones become
    `invitations`.

    Raises:
        DecodeError: If the user record is missing, or any record of a known
            kind is malformed.

    """
    user: User | None = None
    organisations: list[Organisation] = []
    invitations: list[Invitation] = []

    for record in _decode_known(items):
        if isinstance(record, UserRecord):
            user = record.to_user()
        elif isinstance(record, UserOrganisationRecord):
            organisation = record.to_organisation()
            if record.accepted_at is None:
                invitations.append(
                    Invitation(organisation=organisation, invited_at=record.invited_at)
                )
            else:
                organisations.append(organisation)

    if user is None:
        raise DecodeError("partition has no user record", record_kind=USER_RECORD)

    return UserDetails(
        **user.model_dump(),
        organisations=organisations,
        invitations=invitations,
    )


def build_organisation_details(items: Iterable[Item]) -> OrganisationDetails:
    """Build an OrganisationDetails from every record in an organisation partition.

    Each member record contributes its user to every organisation group in
    its GroupSet, and to every service group of a service that has a service
    record in the partition. Service group entries for services without a
    service record are dropped, with a warning.

    Groups keep first-seen order; a user appears at most once per group.

    Raises:
        DecodeError: If the organisation record is missing, or any record of
            a known kind is malformed.

    """
    organisation: Organisation | None = None
    users: dict[str, User] = {}
    groups: dict[GroupName, dict[str, None]] = {}
    services: dict[str, Service] = {}
    staged_service_groups: dict[str, dict[GroupName, dict[str, None]]] = {}

    for record in _decode_known(items):
        if isinstance(record, OrganisationRecord):
            organisation = record.to_organisation()
        elif isinstance(record, OrganisationMemberRecord):
            user = record.to_user()
            users[user.id] = user
            for group in record.groups.organisation_groups():
                groups.setdefault(group, {})[user.id] = None
            for service_id, service_groups in record.groups.service_groups().items():
                staged = staged_service_groups.setdefault(service_id, {})
                for group in service_groups:
                    staged.setdefault(group, {})[user.id] = None
        elif isinstance(record, OrganisationServiceRecord):
            services[record.service_id] = record.to_service()

    if organisation is None:
        raise DecodeError("partition has no organisation record", record_kind=ORGANISATION_RECORD)

    for service_id, service_groups in staged_service_groups.items():
        service = services.get(service_id)
        if service is None:
            log.warning(
                "organisation.orphaned_service_groups",
                organisation_id=organisation.id,
                service_id=service_id,
                groups=sorted(service_groups),
            )
            continue
        service.groups = {
            group: [users[user_id] for user_id in user_ids]
            for group, user_ids in service_groups.items()
        }

    return OrganisationDetails(
        id=organisation.id,
        name=organisation.name,
        groups={
            group: [users[user_id] for user_id in user_ids] for group, user_ids in groups.items()
        },
        services=list(services.values()),
    )


__all__ = [
    "build_organisation_details",
    "build_user_details",
]
