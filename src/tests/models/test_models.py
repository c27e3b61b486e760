"""Tests for model-level parsing, serialization and constraints."""

from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from bakehouse.models import BakeSlot, Flavor, OrderStatus, Recipe
from bakehouse.models.flavor import FlavorSize, parse_sizes
from bakehouse.models.recipe import RecipeIngredient, parse_steps
from bakehouse.services import order_intake_service
from bakehouse.services.exceptions import ValidationError


class TestFlavorSizes:
    def test_sizes_round_trip_through_json(self):
        flavor = Flavor(name="Rye")
        flavor.sizes = [{"name": " Regular ", "price": "11.5"}, FlavorSize("Mini", Decimal("5"))]

        assert flavor.sizes == [
            FlavorSize("Regular", Decimal("11.5")),
            FlavorSize("Mini", Decimal("5.0")),
        ]
        assert flavor.price_for("Mini") == Decimal("5")

    @pytest.mark.parametrize(
        "raw",
        [
            [{"name": "", "price": 1}],
            [{"name": "Regular", "price": True}],
            [{"name": "Regular", "price": "abc"}],
            [{"name": "Regular", "price": 1}, {"name": "Regular", "price": 2}],
            "Regular",
        ],
    )
    def test_invalid_sizes(self, raw):
        with pytest.raises(ValidationError):
            parse_sizes(raw)

    def test_to_dict_exposes_sizes(self):
        flavor = Flavor(name="Rye", sizes_json='[{"name": "Regular", "price": 12.0}]')

        data = flavor.to_dict()

        assert data["sizes"] == [{"name": "Regular", "price": 12.0}]
        assert "sizes_json" not in data


class TestRecipe:
    def test_ingredients_accept_camel_case_cost(self):
        recipe = Recipe(name="Focaccia", yields_loaves=2)
        recipe.lamination_ingredients = [
            {"name": "Butter", "quantity": "8", "unit": "oz", "costPerUnit": 0.3}
        ]

        assert recipe.lamination_ingredients == [RecipeIngredient("Butter", 8.0, "oz", 0.3)]
        assert recipe.base_ingredients == []

    def test_invalid_lines_are_all_reported(self):
        recipe = Recipe(name="Broken")
        with pytest.raises(ValidationError) as exc_info:
            recipe.base_ingredients = [
                {"name": "Flour", "quantity": -1},
                {"quantity": 2},
                {"name": "Salt", "quantity": 1, "cost_per_unit": "x"},
            ]
        assert len(exc_info.value.errors) == 3

    def test_steps_are_ordered(self):
        steps = parse_steps(
            [{"stepNumber": 2, "instruction": "Bake"}, {"step_number": 1, "instruction": "Mix"}]
        )
        assert [s.instruction for s in steps] == ["Mix", "Bake"]

    def test_plain_string_steps(self):
        assert parse_steps(["Mix", "Bake"])[1].step_number == 2


class TestConstraints:
    def test_booked_cannot_exceed_capacity(self, test_db, sample_location):
        session = test_db()
        slot = BakeSlot(
            date=date(2030, 1, 1),
            location_id=sample_location.id,
            total_capacity=2,
            current_orders=3,
            cutoff_time=datetime(2029, 12, 30),
        )
        session.add(slot)

        with pytest.raises(IntegrityError):
            session.flush()
        session.rollback()

    def test_enum_stored_by_value(self, test_db, sample_slot, sample_flavor, make_request):
        order_intake_service.submit_order(make_request(sample_slot.id, sample_flavor.id))

        raw = test_db().execute(text("SELECT status, payment_status FROM orders")).one()

        assert tuple(raw) == (OrderStatus.SUBMITTED.value, "pending")
