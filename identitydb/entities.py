"""Domain types returned by the stores.

These are plain Pydantic models; they know nothing about keys or records.
"""

from datetime import datetime
from typing import TypeAlias

from pydantic import BaseModel, Field, field_validator

GroupName: TypeAlias = str

# Reserved by convention only.
GROUP_OWNER: GroupName = "owner"
GROUP_MEMBER: GroupName = "member"


class User(BaseModel):
    """A user of the system, identified by email address.

    The ID is always stored lower-cased.
    """

    id: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    created_at: datetime

    @field_validator("id")
    @classmethod
    def _lower_case_email(cls, value: str) -> str:
        return value.lower()


class Organisation(BaseModel):
    id: str
    name: str


class Invitation(BaseModel):
    """An invitation for a user to join an organisation.

    Attributes:
        accepted_at: None while the invitation is pending.

    """

    organisation: Organisation
    invited_at: datetime
    accepted_at: datetime | None = None


class Service(BaseModel):
    """A service owned by an organisation."""

    id: str
    name: str
    groups: dict[GroupName, list[User]] = Field(default_factory=dict)


class UserDetails(User):
    """A user with every organisation they belong to or are invited to."""

    organisations: list[Organisation] = Field(default_factory=list)
    invitations: list[Invitation] = Field(default_factory=list)


class OrganisationDetails(Organisation):
    """An organisation with its groups and services.

    Users within a group are not in any particular order.
    """

    groups: dict[GroupName, list[User]] = Field(default_factory=dict)
    services: list[Service] = Field(default_factory=list)


__all__ = [
    "GROUP_MEMBER",
    "GROUP_OWNER",
    "GroupName",
    "Invitation",
    "Organisation",
    "OrganisationDetails",
    "Service",
    "User",
    "UserDetails",
]
