"""Typed attribute access for building DynamoDB expressions.

This module provides the AttributePath and AttrDescriptor classes that enable
Record.attr.field_name access. The returned ExpressionField carries the wire
attribute name (the field alias), so stores never spell attribute names out
by hand.
"""

from typing import Any, Generic, TypeVar, overload

from pydantic import BaseModel

from identitydb.expressions import ExpressionField

ModelT = TypeVar("ModelT", bound=BaseModel)


class AttributePath(Generic[ModelT]):
    """Provides typed attribute access for building DynamoDB expressions.

    Example:
        class OrganisationMemberRecord(Record):
            first_name: str = Field(alias="firstName")

        OrganisationMemberRecord.attr.first_name
        Returns ExpressionField("firstName").

    """

    _model_cls: type[ModelT]

    def __init__(self, model_cls: type[ModelT]) -> None:
        # Use object.__setattr__ to avoid triggering __setattr__
        object.__setattr__(self, "_model_cls", model_cls)

    def __getattr__(self, name: str) -> ExpressionField[Any]:
        model_cls: type[BaseModel] = object.__getattribute__(self, "_model_cls")

        if name.startswith("_"):
            raise AttributeError(f"Cannot access private attribute '{name}'")

        if name not in model_cls.model_fields:
            raise AttributeError(f"'{model_cls.__name__}' has no field '{name}'")

        field_info = model_cls.model_fields[name]
        return ExpressionField(field_info.alias or name)

    def __repr__(self) -> str:
        model_cls = object.__getattribute__(self, "_model_cls")
        return f"AttributePath({model_cls.__name__})"


class AttrDescriptor:
    """Descriptor that provides AttributePath access on record classes.

    Example:
        UserRecord.attr.email
        Returns ExpressionField("email").

    """

    @overload
    def __get__(self, obj: None, objtype: type[ModelT]) -> AttributePath[ModelT]: ...

    @overload
    def __get__(
        self,
        obj: ModelT,
        objtype: type[ModelT] | None = None,
    ) -> AttributePath[ModelT]: ...

    def __get__(
        self,
        obj: ModelT | None,
        objtype: type[ModelT] | None = None,
    ) -> AttributePath[ModelT]:
        if objtype is None:
            raise AttributeError("Cannot access attr from instance without class")
        return AttributePath(objtype)


__all__ = [
    "AttrDescriptor",
    "AttributePath",
]
