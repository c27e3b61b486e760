"""
Tests for recipe scaling and costing.

The scaler is pure, so recipes are built in memory without a database.
"""

from decimal import Decimal

import pytest

from bakehouse.models import Recipe
from bakehouse.services import recipe_scaler
from bakehouse.services.exceptions import ValidationError
from bakehouse.utils.config import BusinessSettings


def make_recipe(base, yields_loaves=1, fold=None, name="Test Loaf"):
    recipe = Recipe(name=name, yields_loaves=yields_loaves)
    recipe.base_ingredients = base
    if fold:
        recipe.fold_ingredients = fold
    return recipe


@pytest.fixture
def loaf():
    return make_recipe(
        [
            {"name": "Flour", "quantity": 16, "unit": "oz", "cost_per_unit": 0.05},
            {"name": "Honey", "quantity": 2, "unit": "oz", "cost_per_unit": 0.25},
        ],
        fold=[{"name": "Oats", "quantity": 1.5, "unit": "oz"}],
    )


class TestScale:
    def test_scales_linearly_by_loaves(self, loaf):
        result = recipe_scaler.scale(loaf, 5)

        flour = result.phases["base"][0]
        assert flour.name == "Flour"
        assert flour.quantity == pytest.approx(80.0)
        assert result.phases["fold"][0].quantity == pytest.approx(7.5)
        assert result.scale_factor == 5

    def test_divides_by_batch_yield(self):
        recipe = make_recipe([{"name": "Flour", "quantity": 16, "unit": "oz"}], yields_loaves=2)

        result = recipe_scaler.scale(recipe, 5)

        assert result.phases["base"][0].quantity == pytest.approx(40.0)

    def test_sum_of_parts_equals_whole(self, loaf):
        whole = recipe_scaler.scale(loaf, 7)
        parts = [recipe_scaler.scale(loaf, 3), recipe_scaler.scale(loaf, 4)]

        for index, line in enumerate(whole.all_ingredients()):
            assert line.quantity == pytest.approx(
                sum(part.all_ingredients()[index].quantity for part in parts)
            )

    def test_zero_loaves(self, loaf):
        result = recipe_scaler.scale(loaf, 0)
        assert all(line.quantity == 0 for line in result.all_ingredients())
        assert result.total_cost == Decimal("0")

    @pytest.mark.parametrize("loaves", [-1, 2.5, True])
    def test_rejects_bad_loaf_counts(self, loaf, loaves):
        with pytest.raises(ValidationError):
            recipe_scaler.scale(loaf, loaves)

    def test_missing_recipe(self):
        result = recipe_scaler.scale(None, 5)

        assert isinstance(result, recipe_scaler.NoRecipe)
        assert not result


class TestCosting:
    def test_cost_per_loaf_includes_overhead(self, loaf):
        # 16 * 0.05 + 2 * 0.25 = 1.30 per batch of one, plus 0.50 + 0.12 overhead
        assert recipe_scaler.cost_per_loaf(loaf) == Decimal("1.9200")

    def test_overhead_comes_from_settings(self, loaf):
        settings = BusinessSettings(packaging_per_loaf=Decimal("1.00"), utilities_per_loaf=Decimal("0"))
        assert recipe_scaler.cost_per_loaf(loaf, settings=settings) == Decimal("2.3000")

    def test_price_list_fills_missing_costs(self, loaf):
        with_oats = recipe_scaler.cost_per_loaf(loaf, prices={"oats": Decimal("0.10")})
        assert with_oats == Decimal("2.0700")

    def test_scaled_total_cost(self, loaf):
        assert recipe_scaler.scale(loaf, 5).total_cost == Decimal("9.6000")


class TestMergeIngredientTotals:
    def test_merges_by_normalized_name_and_unit(self):
        first = make_recipe([{"name": "Bread  Flour", "quantity": 10, "unit": "oz"}])
        second = make_recipe([{"name": " bread flour", "quantity": 4, "unit": "OZ"}])

        totals = recipe_scaler.merge_ingredient_totals(
            [recipe_scaler.scale(first, 1), recipe_scaler.scale(second, 2)]
        )

        assert totals == [
            {"name": "bread flour", "unit": "oz", "quantity": 18.0, "cost": Decimal("0.0000")}
        ]

    def test_different_units_stay_separate(self):
        recipe = make_recipe(
            [
                {"name": "Salt", "quantity": 1, "unit": "tsp"},
                {"name": "Salt", "quantity": 0.5, "unit": "oz"},
            ]
        )
        totals = recipe_scaler.merge_ingredient_totals([recipe_scaler.scale(recipe, 1)])
        assert [(t["name"], t["unit"]) for t in totals] == [("salt", "oz"), ("salt", "tsp")]

    def test_independent_of_input_order(self, loaf):
        other = make_recipe([{"name": "flour", "quantity": 0.1, "unit": "oz"}])
        scaled = [recipe_scaler.scale(loaf, 3), recipe_scaler.scale(other, 7)]

        assert recipe_scaler.merge_ingredient_totals(scaled) == (
            recipe_scaler.merge_ingredient_totals(list(reversed(scaled)))
        )
