"""Tests for condition objects and expression building."""

from datetime import datetime, timezone

import pytest

from identitydb.conditions import And, AttributeExists, AttributeNotExists, Condition
from identitydb.exceptions import (
    EmptyUpdateError,
    InsufficientConditionsError,
    UnknownConditionTypeError,
)
from identitydb.expressions import ExpressionBuilder, ExpressionField


class TestAndRequiresMinimumConditions:
    """Test that And raises when given fewer than 2 conditions."""

    def test_and_with_zero_conditions_raises(self) -> None:
        with pytest.raises(InsufficientConditionsError) as exc_info:
            And()

        assert exc_info.value.operator == "And"
        assert exc_info.value.count == 0

    def test_and_with_one_condition_raises(self) -> None:
        with pytest.raises(InsufficientConditionsError) as exc_info:
            And(AttributeExists("id"))

        assert exc_info.value.count == 1

    def test_and_with_two_conditions_succeeds(self) -> None:
        cond1 = AttributeNotExists("id")
        cond2 = AttributeNotExists("rng")

        result = And(cond1, cond2)

        assert result.conditions == (cond1, cond2)


class TestExpressionField:
    def test_exists_and_not_exists_use_the_path(self) -> None:
        field = ExpressionField[str]("rng")

        assert field.exists() == AttributeExists("rng")
        assert field.not_exists() == AttributeNotExists("rng")

    def test_fields_with_same_path_are_equal_and_hash_alike(self) -> None:
        assert ExpressionField("groups") == ExpressionField("groups")
        assert len({ExpressionField("groups"), ExpressionField("groups")}) == 1


class TestBuildConditionExpression:
    def test_attribute_exists(self) -> None:
        builder = ExpressionBuilder()

        expression = builder.build_condition_expression(AttributeExists("rng"))

        assert expression == "attribute_exists(#n0)"
        assert builder.attribute_names == {"#n0": "rng"}
        assert builder.attribute_values == {}

    def test_and_wraps_each_part(self) -> None:
        builder = ExpressionBuilder()

        expression = builder.build_condition_expression(
            And(AttributeNotExists("id"), AttributeNotExists("rng"))
        )

        assert expression == "(attribute_not_exists(#n0)) AND (attribute_not_exists(#n1))"
        assert builder.attribute_names == {"#n0": "id", "#n1": "rng"}

    def test_name_placeholders_are_reused(self) -> None:
        builder = ExpressionBuilder()

        expression = builder.build_condition_expression(
            And(AttributeExists("rng"), AttributeExists("rng"))
        )

        assert expression == "(attribute_exists(#n0)) AND (attribute_exists(#n0))"
        assert builder.attribute_names == {"#n0": "rng"}

    def test_unknown_condition_raises(self) -> None:
        class Custom(Condition):
            pass

        with pytest.raises(UnknownConditionTypeError) as exc_info:
            ExpressionBuilder().build_condition_expression(Custom())

        assert exc_info.value.condition_type is Custom


class TestBuildUpdateExpression:
    def test_set_only(self) -> None:
        builder = ExpressionBuilder()

        expression = builder.build_update_expression({ExpressionField("firstName"): "Homer"})

        assert expression == "SET #n0 = :v0"
        assert builder.attribute_names == {"#n0": "firstName"}
        assert builder.attribute_values == {":v0": "Homer"}

    def test_set_values_are_made_json_compatible(self) -> None:
        builder = ExpressionBuilder()

        builder.build_update_expression(
            {ExpressionField("acceptedAt"): datetime(2024, 3, 1, tzinfo=timezone.utc)}
        )

        assert builder.attribute_values == {":v0": "2024-03-01T00:00:00Z"}

    def test_set_and_add_share_placeholders(self) -> None:
        builder = ExpressionBuilder()

        expression = builder.build_update_expression(
            {ExpressionField("typ"): "organisationMember"},
            add={ExpressionField("groups"): ["organisationGroup/owner"]},
        )

        assert expression == "SET #n0 = :v0 ADD #n1 :v1"
        assert builder.attribute_values == {
            ":v0": "organisationMember",
            ":v1": {"organisationGroup/owner"},
        }

    def test_delete_only(self) -> None:
        builder = ExpressionBuilder()

        expression = builder.build_update_expression(
            delete={ExpressionField("groups"): {"organisationGroup/a", "organisationGroup/b"}}
        )

        assert expression == "DELETE #n0 :v0"
        assert builder.attribute_values == {
            ":v0": {"organisationGroup/a", "organisationGroup/b"}
        }

    def test_empty_sets_are_dropped(self) -> None:
        builder = ExpressionBuilder()

        expression = builder.build_update_expression(
            {ExpressionField("phone"): ""},
            add={ExpressionField("groups"): set()},
        )

        assert expression == "SET #n0 = :v0"

    def test_nothing_to_update_raises(self) -> None:
        with pytest.raises(EmptyUpdateError):
            ExpressionBuilder().build_update_expression(
                delete={ExpressionField("groups"): set()}
            )
