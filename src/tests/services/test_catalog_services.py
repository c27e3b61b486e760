"""
Tests for catalog maintenance: bake slots, flavors, locations, recipes,
ingredients and extra production.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from bakehouse.services import (
    bake_slot_service,
    extra_production_service,
    flavor_service,
    ingredient_service,
    location_service,
    order_intake_service,
    prep_sheet_service,
    recipe_service,
)
from bakehouse.services.exceptions import InvalidState, NotFound, ValidationError
from bakehouse.utils.config import BusinessSettings


# ============================================================================
# Bake slots
# ============================================================================


class TestBakeSlots:
    def test_default_cutoff_is_hours_before_bake_day(self, sample_location):
        slot = bake_slot_service.create_slot(
            {"date": date(2030, 3, 15), "location_id": sample_location.id, "total_capacity": 12},
            settings=BusinessSettings(default_cutoff_hours=36),
        )
        assert slot.cutoff_time == datetime(2030, 3, 13, 12, 0, tzinfo=timezone.utc)

    def test_create_requires_fields(self, test_db):
        with pytest.raises(ValidationError) as exc_info:
            bake_slot_service.create_slot({"total_capacity": -2})
        assert len(exc_info.value.errors) == 3

    def test_generate_is_idempotent(self, sample_location):
        # 2030-01-07 is a Monday; two weeks of Fridays and Saturdays
        args = (date(2030, 1, 7), date(2030, 1, 20), [4, 5], [sample_location.id], 24)

        created = bake_slot_service.generate_slots(*args)
        again = bake_slot_service.generate_slots(*args)

        assert [slot.date for slot in created] == [
            date(2030, 1, 11),
            date(2030, 1, 12),
            date(2030, 1, 18),
            date(2030, 1, 19),
        ]
        assert again == []

    def test_generate_validates_weekdays(self, sample_location):
        with pytest.raises(ValidationError):
            bake_slot_service.generate_slots(
                date(2030, 1, 7), date(2030, 1, 8), [7], [sample_location.id], 10
            )

    def test_capacity_cannot_drop_below_booked(self, sample_slot, sample_flavor, make_request):
        order_intake_service.submit_order(make_request(sample_slot.id, sample_flavor.id, quantity=4))

        with pytest.raises(ValidationError):
            bake_slot_service.update_slot(sample_slot.id, {"total_capacity": 3})
        assert bake_slot_service.update_slot(sample_slot.id, {"total_capacity": 4}).remaining == 0

    def test_slot_with_orders_cannot_be_deleted(self, sample_slot, sample_flavor, make_request):
        order_intake_service.submit_order(make_request(sample_slot.id, sample_flavor.id))

        with pytest.raises(InvalidState):
            bake_slot_service.delete_slot(sample_slot.id)

    def test_close_and_reopen(self, sample_slot):
        assert bake_slot_service.close_slot(sample_slot.id).is_open is False
        reopened = bake_slot_service.reopen_slot(sample_slot.id)
        assert reopened.is_open is True
        assert reopened.manually_closed_at is None

    def test_list_open_slots(self, sample_slot, sample_location):
        other = bake_slot_service.create_slot(
            {"date": date(2030, 5, 1), "location_id": sample_location.id, "total_capacity": 5}
        )
        bake_slot_service.close_slot(other.id)

        assert [s.id for s in bake_slot_service.list_slots(open_only=True)] == [sample_slot.id]


# ============================================================================
# Flavors and locations
# ============================================================================


class TestFlavors:
    def test_sizes_are_required(self, test_db):
        with pytest.raises(ValidationError):
            flavor_service.create_flavor({"name": "Rye", "sizes": []})

    def test_negative_price(self, test_db):
        with pytest.raises(ValidationError):
            flavor_service.create_flavor({"name": "Rye", "sizes": [{"name": "Regular", "price": -1}]})

    def test_unknown_season(self, sample_flavor):
        with pytest.raises(ValidationError):
            flavor_service.update_flavor(sample_flavor.id, {"season": "monsoon"})

    def test_price_lookup(self, sample_flavor):
        flavor = flavor_service.get_flavor(sample_flavor.id)
        assert flavor.price_for("Mini") == Decimal("6.50")
        assert flavor.price_for("Jumbo") is None

    def test_duplicate_copies_active_recipe(self, sample_recipe, sample_flavor):
        copy = flavor_service.duplicate_flavor(sample_flavor.id)

        assert copy.name == "Honey Oat (Copy)"
        assert copy.is_active is False
        recipe = recipe_service.get_active_recipe_for_flavor(copy.id)
        assert recipe.base_ingredients == sample_recipe.base_ingredients

    def test_flavor_with_production_cannot_be_deleted(self, sample_flavor):
        extra_production_service.create_extra(
            {"production_date": date(2030, 1, 1), "flavor_id": sample_flavor.id, "quantity": 2}
        )
        with pytest.raises(InvalidState):
            flavor_service.delete_flavor(sample_flavor.id)

    def test_unknown_flavor(self, test_db):
        with pytest.raises(NotFound) as exc_info:
            flavor_service.get_flavor(42)
        assert exc_info.value.code == "ORD-105"


class TestLocations:
    def test_name_required(self, test_db):
        with pytest.raises(ValidationError):
            location_service.create_location({"name": "   "})

    def test_active_only(self, sample_location):
        closed = location_service.create_location({"name": "Old Shop", "is_active": False})

        active = location_service.list_locations(active_only=True)

        assert [loc.id for loc in active] == [sample_location.id]
        assert closed.id not in [loc.id for loc in active]


# ============================================================================
# Recipes and ingredients
# ============================================================================


class TestRecipes:
    def test_new_active_recipe_replaces_old(self, sample_recipe, sample_flavor):
        newer = recipe_service.create_recipe(
            {
                "name": "Honey Oat v2",
                "flavor_id": sample_flavor.id,
                "base_ingredients": [{"name": "Flour", "quantity": 15, "unit": "oz"}],
            }
        )

        assert recipe_service.get_active_recipe_for_flavor(sample_flavor.id).id == newer.id
        assert recipe_service.get_recipe(sample_recipe.id).is_active is False

    def test_bad_ingredient_line(self, test_db):
        with pytest.raises(ValidationError):
            recipe_service.create_recipe(
                {"name": "Broken", "base_ingredients": [{"name": "Flour", "quantity": "lots"}]}
            )

    def test_zero_yield(self, test_db):
        with pytest.raises(ValidationError):
            recipe_service.create_recipe({"name": "None", "yields_loaves": 0})

    def test_recipe_cost(self, sample_recipe):
        cost = recipe_service.get_recipe_cost(sample_recipe.id)

        assert cost["batch_cost"] == Decimal("1.3000")
        assert cost["cost_per_loaf"] == Decimal("1.9200")
        assert [line["name"] for line in cost["lines"]["base"]] == ["Flour", "Honey"]


class TestIngredients:
    def test_names_are_normalized_and_unique(self, test_db):
        ingredient_service.create_ingredient({"name": "Bread  Flour", "cost_per_unit": "0.04"})

        with pytest.raises(ValidationError):
            ingredient_service.create_ingredient({"name": " bread flour"})
        assert ingredient_service.load_price_list() == {"bread flour": Decimal("0.0400")}

    def test_price_list_costs_recipe_lines_without_prices(self, sample_flavor):
        ingredient_service.create_ingredient({"name": "Rye", "cost_per_unit": "0.10"})
        recipe = recipe_service.create_recipe(
            {
                "name": "Rye",
                "flavor_id": sample_flavor.id,
                "base_ingredients": [{"name": "rye", "quantity": 10, "unit": "oz"}],
            }
        )

        assert recipe_service.get_recipe_cost(recipe.id)["batch_cost"] == Decimal("1.0000")


# ============================================================================
# Extra production
# ============================================================================


class TestExtraProduction:
    def test_quantity_must_be_positive(self, sample_flavor):
        with pytest.raises(ValidationError):
            extra_production_service.create_extra(
                {"production_date": date(2030, 1, 1), "flavor_id": sample_flavor.id, "quantity": 0}
            )

    def test_disposition_summary(self, sample_flavor):
        for disposition, quantity, price in (("sold", 3, "15.00"), ("sold", 1, "5"), ("wasted", 2, None)):
            extra_production_service.create_extra(
                {
                    "production_date": date(2030, 1, 1),
                    "flavor_id": sample_flavor.id,
                    "quantity": quantity,
                    "disposition": disposition,
                    "sale_price": price,
                }
            )

        summary = extra_production_service.disposition_summary()

        assert summary["sold"] == {"quantity": 4, "revenue": Decimal("20.00")}
        assert summary["wasted"]["quantity"] == 2
        assert summary["gifted"] == {"quantity": 0, "revenue": Decimal("0.00")}

    def test_extra_on_completed_sheet_is_frozen(self, sample_slot, sample_flavor):
        sheet = prep_sheet_service.build_prep_sheet(sample_slot.date)
        item = prep_sheet_service.add_extra(sheet.id, {"flavor_id": sample_flavor.id, "quantity": 2})
        prep_sheet_service.complete_prep_sheet(sheet.id)

        with pytest.raises(InvalidState):
            extra_production_service.update_extra(item.extra_production_id, {"quantity": 5})
        with pytest.raises(InvalidState):
            extra_production_service.delete_extra(item.extra_production_id)
