"""Group membership sets.

A GroupSet folds two relations for one member of one organisation into a
single DynamoDB string set:

- organisation-level groups, stored as `organisationGroup/<name>`
- per-service groups, stored as `serviceGroup/<serviceId>/<name>`

Because both relations share one set attribute, grants are written with an
ADD of the encoded tags and revocations with a DELETE, so concurrent changes
to different groups merge instead of overwriting each other.

A GroupSet is built and consumed within a single operation; it is not shared
between threads.
"""

from collections.abc import Iterable, Mapping

from identitydb.exceptions import DecodeError

ORGANISATION_GROUP_TAG = "organisationGroup"
SERVICE_GROUP_TAG = "serviceGroup"


class GroupSet:
    """Organisation-level and service-level group memberships of one user.

    Example:
        groups = GroupSet()
        groups.add_organisation_groups("owner")
        groups.add_service_groups("svc-1", "admin", "reader")
        groups.encode()
        Returns {"organisationGroup/owner", "serviceGroup/svc-1/admin",
        "serviceGroup/svc-1/reader"}.

    """

    def __init__(
        self,
        organisation_groups: Iterable[str] = (),
        service_groups: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        self._organisation_groups: set[str] = set()
        self._service_groups: dict[str, set[str]] = {}
        self.add_organisation_groups(*organisation_groups)
        for service_id, names in (service_groups or {}).items():
            self.add_service_groups(service_id, *names)

    def add_organisation_groups(self, *names: str) -> None:
        self._organisation_groups.update(names)

    def add_service_groups(self, service_id: str, *names: str) -> None:
        if not names:
            return
        self._service_groups.setdefault(service_id, set()).update(names)

    def organisation_groups(self) -> frozenset[str]:
        return frozenset(self._organisation_groups)

    def service_groups(self) -> dict[str, frozenset[str]]:
        return {
            service_id: frozenset(names) for service_id, names in self._service_groups.items()
        }

    def encode(self) -> set[str]:
        """Encode the memberships as a set of tagged strings."""
        tags = {f"{ORGANISATION_GROUP_TAG}/{name}" for name in self._organisation_groups}
        for service_id, names in self._service_groups.items():
            tags.update(f"{SERVICE_GROUP_TAG}/{service_id}/{name}" for name in names)
        return tags

    @classmethod
    def decode(cls, tags: Iterable[str] | None) -> "GroupSet":
        """Decode a set of tagged strings.

        A missing attribute (None) decodes to an empty GroupSet. Tags with an
        unrecognized prefix are ignored.

        Raises:
            DecodeError: If a tag has fewer than two `/`-separated segments,
                a known tag has an empty group name or service ID, or a service
                group tag has no group name.

        """
        group_set = cls()
        for tag in tags or ():
            parts = tag.split("/", 1)
            if len(parts) < 2:
                raise DecodeError(f"cannot decode {tag!r} into a group")
            prefix, rest = parts
            if prefix == ORGANISATION_GROUP_TAG:
                if not rest:
                    raise DecodeError(f"cannot decode {tag!r} into a group")
                group_set.add_organisation_groups(rest)
            elif prefix == SERVICE_GROUP_TAG:
                service_parts = rest.split("/", 1)
                if len(service_parts) < 2 or not all(service_parts):
                    raise DecodeError(f"cannot decode {tag!r} into a service group")
                group_set.add_service_groups(service_parts[0], service_parts[1])
        return group_set

    def __bool__(self) -> bool:
        return bool(self._organisation_groups or self._service_groups)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GroupSet):
            return NotImplemented
        return self.encode() == other.encode()

    def __repr__(self) -> str:
        return f"GroupSet({sorted(self.encode())!r})"


__all__ = [
    "ORGANISATION_GROUP_TAG",
    "SERVICE_GROUP_TAG",
    "GroupSet",
]
