"""Tests for rebuilding domain objects from partition records."""

from datetime import datetime, timezone
from typing import Any

import pytest
from structlog.testing import capture_logs

from identitydb.entities import Organisation, Service, User
from identitydb.exceptions import DecodeError
from identitydb.groupset import GroupSet
from identitydb.projection import build_organisation_details, build_user_details
from identitydb.records import (
    OrganisationMemberRecord,
    OrganisationRecord,
    OrganisationServiceRecord,
    UserOrganisationRecord,
    UserRecord,
)

CREATED = datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc)
INVITED = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
ACCEPTED = datetime(2024, 3, 2, 10, 0, tzinfo=timezone.utc)

ORGANISATION = Organisation(id="org-1", name="Springfield Nuclear")
HOMER = User(id="homer@example.com", first_name="Homer", created_at=CREATED)
LENNY = User(id="lenny@example.com", first_name="Lenny", created_at=CREATED)
CARL = User(id="carl@example.com", first_name="Carl", created_at=CREATED)


def _member(user: User, groups: GroupSet | None = None) -> dict[str, Any]:
    return OrganisationMemberRecord.from_member(ORGANISATION.id, user, groups).to_item()


def _service(service_id: str, name: str) -> dict[str, Any]:
    return OrganisationServiceRecord.from_service(
        ORGANISATION.id, Service(id=service_id, name=name)
    ).to_item()


def _organisation() -> dict[str, Any]:
    return OrganisationRecord.from_organisation(ORGANISATION).to_item()


def _unknown() -> dict[str, Any]:
    return {"id": "organisation/org-1", "rng": "badge/1", "typ": "badge", "v": 3}


class TestBuildUserDetails:
    def test_user_only_has_empty_collections(self) -> None:
        details = build_user_details([UserRecord.from_user(HOMER).to_item()])

        assert details.id == HOMER.id
        assert details.first_name == "Homer"
        assert details.organisations == []
        assert details.invitations == []

    def test_pending_and_accepted_memberships(self) -> None:
        other = Organisation(id="org-2", name="Moe's")
        items = [
            UserOrganisationRecord.from_membership(
                HOMER, ORGANISATION, invited_at=INVITED, accepted_at=ACCEPTED
            ).to_item(),
            UserRecord.from_user(HOMER).to_item(),
            UserOrganisationRecord.from_membership(HOMER, other, invited_at=INVITED).to_item(),
        ]

        details = build_user_details(items)

        assert details.organisations == [ORGANISATION]
        assert len(details.invitations) == 1
        assert details.invitations[0].organisation == other
        assert details.invitations[0].invited_at == INVITED
        assert details.invitations[0].accepted_at is None

    def test_missing_user_record_raises(self) -> None:
        membership = UserOrganisationRecord.from_membership(
            HOMER, ORGANISATION, invited_at=INVITED
        )
        items = [membership.to_item()]

        with pytest.raises(DecodeError):
            build_user_details(items)

    def test_unknown_kinds_are_skipped(self) -> None:
        items = [UserRecord.from_user(HOMER).to_item(), _unknown()]

        with capture_logs() as logs:
            details = build_user_details(items)

        assert details.id == HOMER.id
        assert logs[0]["event"] == "projection.record_skipped"
        assert logs[0]["record_kind"] == "badge"

    def test_malformed_known_kind_raises(self) -> None:
        broken = UserOrganisationRecord.from_membership(
            HOMER, ORGANISATION, invited_at=INVITED
        ).to_item()
        del broken["organisationName"]

        with pytest.raises(DecodeError):
            build_user_details([UserRecord.from_user(HOMER).to_item(), broken])


class TestBuildOrganisationDetails:
    def test_organisation_only_has_empty_collections(self) -> None:
        details = build_organisation_details([_organisation()])

        assert details.id == "org-1"
        assert details.name == "Springfield Nuclear"
        assert details.groups == {}
        assert details.services == []

    def test_owner_and_hipsters(self) -> None:
        items = [
            _organisation(),
            _member(HOMER, GroupSet(["owner"])),
            _member(LENNY, GroupSet(["hipsters"])),
        ]

        details = build_organisation_details(items)

        assert details.groups == {"owner": [HOMER], "hipsters": [LENNY]}

    def test_member_without_groups_appears_nowhere(self) -> None:
        details = build_organisation_details([_organisation(), _member(CARL)])

        assert details.groups == {}

    def test_service_groups_are_attached_to_their_service(self) -> None:
        items = [
            _organisation(),
            _service("svc-1", "Reactor"),
            _member(HOMER, GroupSet(["owner"], {"svc-1": ["g1"]})),
            _member(LENNY, GroupSet(service_groups={"svc-1": ["g1", "g2"]})),
        ]

        details = build_organisation_details(items)

        assert len(details.services) == 1
        service = details.services[0]
        assert service.id == "svc-1"
        assert service.name == "Reactor"
        assert sorted(user.id for user in service.groups["g1"]) == [HOMER.id, LENNY.id]
        assert service.groups["g2"] == [LENNY]
        assert details.groups == {"owner": [HOMER]}

    def test_service_without_members_has_empty_groups(self) -> None:
        details = build_organisation_details([_organisation(), _service("svc-1", "Reactor")])

        assert details.services == [Service(id="svc-1", name="Reactor", groups={})]

    def test_orphaned_service_groups_are_dropped(self) -> None:
        items = [
            _organisation(),
            _member(HOMER, GroupSet(["owner"], {"deleted-svc": ["g1"]})),
        ]

        with capture_logs() as logs:
            details = build_organisation_details(items)

        assert details.services == []
        assert details.groups == {"owner": [HOMER]}
        warnings = [log for log in logs if log["log_level"] == "warning"]
        assert warnings[0]["event"] == "organisation.orphaned_service_groups"
        assert warnings[0]["service_id"] == "deleted-svc"

    def test_result_does_not_depend_on_record_order(self) -> None:
        items = [
            _member(HOMER, GroupSet(["owner"], {"svc-1": ["g1"]})),
            _service("svc-1", "Reactor"),
            _unknown(),
            _member(LENNY, GroupSet(["hipsters"], {"svc-1": ["g1"]})),
            _organisation(),
        ]

        forwards = build_organisation_details(items)
        backwards = build_organisation_details(list(reversed(items)))

        def _normalised(details: Any) -> dict[str, Any]:
            return {
                "id": details.id,
                "name": details.name,
                "groups": {g: sorted(u.id for u in users) for g, users in details.groups.items()},
                "services": {
                    s.id: (s.name, {g: sorted(u.id for u in us) for g, us in s.groups.items()})
                    for s in details.services
                },
            }

        assert _normalised(forwards) == _normalised(backwards)

    def test_missing_organisation_record_raises(self) -> None:
        with pytest.raises(DecodeError):
            build_organisation_details([_member(HOMER, GroupSet(["owner"]))])

    def test_malformed_member_raises(self) -> None:
        broken = _member(HOMER, GroupSet(["owner"]))
        broken["groups"] = {"organisationGroup"}

        with pytest.raises(DecodeError):
            build_organisation_details([_organisation(), broken])
