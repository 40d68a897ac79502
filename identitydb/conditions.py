"""Condition objects for DynamoDB condition expressions.

Conditions are plain values; ExpressionBuilder renders them into expression
strings with placeholder names.

Example:
    from identitydb.records import OrganisationRecord

    not_overwrite = And(
        OrganisationRecord.attr.partition_key.not_exists(),
        OrganisationRecord.attr.sort_key.not_exists(),
    )
"""

from dataclasses import dataclass

from identitydb.exceptions import InsufficientConditionsError


class Condition:
    """Base class for all conditions."""


@dataclass(frozen=True)
class AttributeExists(Condition):
    path: str


@dataclass(frozen=True)
class AttributeNotExists(Condition):
    path: str


@dataclass(frozen=True, init=False)
class And(Condition):
    """All of the given conditions must hold.

    Raises:
        InsufficientConditionsError: If fewer than two conditions are given.

    """

    conditions: tuple[Condition, ...]

    def __init__(self, *conditions: Condition) -> None:
        if len(conditions) < 2:
            raise InsufficientConditionsError(operator="And", count=len(conditions))
        object.__setattr__(self, "conditions", conditions)


__all__ = [
    "And",
    "AttributeExists",
    "AttributeNotExists",
    "Condition",
]
