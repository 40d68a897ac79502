"""Expression building for DynamoDB requests.

ExpressionField names an attribute; ExpressionBuilder turns conditions and
updates into DynamoDB expression strings, allocating `#n` name placeholders
and `:v` value placeholders as it goes. One builder is used per request so
that every expression in the request shares the same placeholder maps.
"""

from collections.abc import Collection, Mapping
from typing import Any, Generic, TypeVar

from pydantic_core import to_jsonable_python

from identitydb.conditions import And, AttributeExists, AttributeNotExists, Condition
from identitydb.exceptions import EmptyUpdateError, UnknownConditionTypeError

T = TypeVar("T")


class ExpressionField(Generic[T]):
    """A reference to a stored attribute, by its wire name."""

    def __init__(self, path: str) -> None:
        self.path = path

    def exists(self) -> AttributeExists:
        return AttributeExists(self.path)

    def not_exists(self) -> AttributeNotExists:
        return AttributeNotExists(self.path)

    def __hash__(self) -> int:
        return hash(self.path)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExpressionField):
            return NotImplemented
        return self.path == other.path

    def __repr__(self) -> str:
        return f"ExpressionField({self.path!r})"


UpdateMapping = Mapping[ExpressionField[Any], Any]
SetUpdateMapping = Mapping[ExpressionField[Any], Collection[str]]


class ExpressionBuilder:
    """Build condition and update expressions for a single request.

    Attributes:
        attribute_names: Placeholder to attribute name map, for
            ExpressionAttributeNames.
        attribute_values: Placeholder to value map, for
            ExpressionAttributeValues.

    """

    def __init__(self) -> None:
        self.attribute_names: dict[str, str] = {}
        self.attribute_values: dict[str, Any] = {}
        self._name_placeholders: dict[str, str] = {}

    def _get_name_placeholder(self, name: str) -> str:
        placeholder = self._name_placeholders.get(name)
        if placeholder is None:
            placeholder = f"#n{len(self._name_placeholders)}"
            self._name_placeholders[name] = placeholder
            self.attribute_names[placeholder] = name
        return placeholder

    def _get_value_placeholder(self, value: Any) -> str:
        placeholder = f":v{len(self.attribute_values)}"
        self.attribute_values[placeholder] = value
        return placeholder

    def build_condition_expression(self, condition: Condition) -> str:
        """Render a condition.

        Raises:
            UnknownConditionTypeError: For condition classes this builder
                does not know.

        """
        if isinstance(condition, AttributeExists):
            return f"attribute_exists({self._get_name_placeholder(condition.path)})"
        if isinstance(condition, AttributeNotExists):
            return f"attribute_not_exists({self._get_name_placeholder(condition.path)})"
        if isinstance(condition, And):
            parts = [self.build_condition_expression(c) for c in condition.conditions]
            return " AND ".join(f"({part})" for part in parts)
        raise UnknownConditionTypeError(type(condition))

    def build_update_expression(
        self,
        updates: UpdateMapping | None = None,
        *,
        add: SetUpdateMapping | None = None,
        delete: SetUpdateMapping | None = None,
    ) -> str:
        """Render an update expression.

        Args:
            updates: Attributes to SET, replacing the stored value.
            add: String-set attributes to ADD to (set union).
            delete: String-set attributes to DELETE from (set difference).

        Empty sets in `add` and `delete` are dropped, since DynamoDB cannot
        store or match an empty set.

        Raises:
            EmptyUpdateError: If there is nothing to update.

        """
        clauses: list[str] = []

        set_parts = [
            f"{self._get_name_placeholder(field.path)} = "
            f"{self._get_value_placeholder(to_jsonable_python(value))}"
            for field, value in (updates or {}).items()
        ]
        if set_parts:
            clauses.append("SET " + ", ".join(set_parts))

        for action, mapping in (("ADD", add), ("DELETE", delete)):
            parts = [
                f"{self._get_name_placeholder(field.path)} "
                f"{self._get_value_placeholder(set(values))}"
                for field, values in (mapping or {}).items()
                if values
            ]
            if parts:
                clauses.append(f"{action} " + ", ".join(parts))

        if not clauses:
            raise EmptyUpdateError()

        return " ".join(clauses)


__all__ = [
    "ExpressionBuilder",
    "ExpressionField",
    "SetUpdateMapping",
    "UpdateMapping",
]
