"""
Tests for prep sheets: building a bake date's plan, editing drafts,
aggregating scaled recipes and completing the sheet into production records.
"""

from unittest.mock import patch

import pytest

from bakehouse.models import PrepSheetStatus, ProductionRecord, ProductionStatus
from bakehouse.services import order_intake_service, prep_sheet_service, production_ledger
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import DatabaseError, InvalidState, ValidationError


@pytest.fixture
def two_orders(sample_slot, sample_flavor, sample_recipe, make_request):
    first = order_intake_service.submit_order(
        make_request(sample_slot.id, sample_flavor.id, quantity=2, email="one@example.com")
    )
    second = order_intake_service.submit_order(
        make_request(sample_slot.id, sample_flavor.id, quantity=3, email="two@example.com")
    )
    return first, second


@pytest.fixture
def draft_sheet(two_orders, sample_slot):
    return prep_sheet_service.build_prep_sheet(sample_slot.date)


def _item_ids(prep_sheet_id):
    with session_scope() as session:
        sheet = prep_sheet_service.get_prep_sheet(prep_sheet_id, session=session)
        return [item.id for item in sheet.items]


def _record_count():
    with session_scope() as session:
        return session.query(ProductionRecord).count()


# ============================================================================
# Building and planning
# ============================================================================


class TestBuild:
    def test_collects_orders_for_the_date(self, draft_sheet, two_orders):
        with session_scope() as session:
            sheet = prep_sheet_service.get_prep_sheet(draft_sheet.id, session=session)
            assert sheet.status == PrepSheetStatus.DRAFT
            assert sorted(item.order_id for item in sheet.items) == sorted(o.id for o in two_orders)
            assert sum(item.planned_quantity for item in sheet.items) == 5

    def test_skips_canceled_orders(self, two_orders, sample_slot):
        order_intake_service.cancel_order(two_orders[0].id)

        sheet = prep_sheet_service.build_prep_sheet(sample_slot.date)

        with session_scope() as session:
            sheet = prep_sheet_service.get_prep_sheet(sheet.id, session=session)
            assert [item.order_id for item in sheet.items] == [two_orders[1].id]

    def test_rebuilding_a_draft_replaces_items(self, draft_sheet, sample_slot):
        again = prep_sheet_service.build_prep_sheet(sample_slot.date)

        assert again.id == draft_sheet.id
        assert len(_item_ids(again.id)) == 2

    def test_lookup_by_date(self, draft_sheet, sample_slot):
        assert prep_sheet_service.get_prep_sheet_for_date(sample_slot.date).id == draft_sheet.id


class TestPlan:
    def test_scales_recipe_for_total_loaves(self, draft_sheet, sample_flavor):
        plan = prep_sheet_service.get_prep_plan(draft_sheet.id)

        assert plan.total_loaves == 5
        assert [(f.flavor_id, f.quantity) for f in plan.flavors] == [(sample_flavor.id, 5)]
        flour = next(t for t in plan.ingredient_totals if t["name"] == "flour")
        assert flour["quantity"] == pytest.approx(80.0)
        assert plan.missing_recipes == []

    def test_same_items_in_any_order_give_same_plan(self, draft_sheet, two_orders):
        before = prep_sheet_service.get_prep_plan(draft_sheet.id)

        prep_sheet_service.remove_order(draft_sheet.id, two_orders[0].id)
        prep_sheet_service.add_order(draft_sheet.id, two_orders[0].id)
        after = prep_sheet_service.get_prep_plan(draft_sheet.id)

        assert after.ingredient_totals == before.ingredient_totals
        assert after.total_loaves == before.total_loaves

    def test_flavor_without_recipe_is_reported(self, sample_slot, make_request, test_db):
        from bakehouse.services import flavor_service

        plain = flavor_service.create_flavor(
            {"name": "Plain", "sizes": [{"name": "Regular", "price": 8}]}
        )
        order_intake_service.submit_order(make_request(sample_slot.id, plain.id, quantity=1))
        sheet = prep_sheet_service.build_prep_sheet(sample_slot.date)

        plan = prep_sheet_service.get_prep_plan(sheet.id)

        assert plan.missing_recipes == ["Plain"]
        assert not plan.flavors[0].scaled
        assert plan.ingredient_totals == []


# ============================================================================
# Draft editing
# ============================================================================


class TestDraftEditing:
    def test_order_cannot_be_added_twice(self, draft_sheet, two_orders):
        with pytest.raises(ValidationError):
            prep_sheet_service.add_order(draft_sheet.id, two_orders[0].id)

    def test_canceled_order_cannot_be_added(self, draft_sheet, two_orders):
        prep_sheet_service.remove_order(draft_sheet.id, two_orders[0].id)
        order_intake_service.cancel_order(two_orders[0].id)

        with pytest.raises(InvalidState):
            prep_sheet_service.add_order(draft_sheet.id, two_orders[0].id)

    def test_extra_production_lifecycle(self, draft_sheet, sample_flavor):
        item = prep_sheet_service.add_extra(
            draft_sheet.id, {"flavor_id": sample_flavor.id, "quantity": 4, "disposition": "sold"}
        )
        assert prep_sheet_service.get_prep_plan(draft_sheet.id).total_loaves == 9

        prep_sheet_service.update_extra(draft_sheet.id, item.extra_production_id, {"quantity": 1})
        assert prep_sheet_service.get_prep_plan(draft_sheet.id).total_loaves == 6

        prep_sheet_service.remove_extra(draft_sheet.id, item.extra_production_id)
        assert prep_sheet_service.get_prep_plan(draft_sheet.id).total_loaves == 5

    def test_extra_date_is_fixed_by_sheet(self, draft_sheet, sample_flavor):
        item = prep_sheet_service.add_extra(
            draft_sheet.id, {"flavor_id": sample_flavor.id, "quantity": 1}
        )
        with pytest.raises(ValidationError):
            prep_sheet_service.update_extra(
                draft_sheet.id, item.extra_production_id, {"production_date": None}
            )


# ============================================================================
# Completion
# ============================================================================


class TestComplete:
    def test_creates_one_record_per_item(self, draft_sheet):
        records = prep_sheet_service.complete_prep_sheet(draft_sheet.id)

        assert len(records) == 2
        assert all(record.status == ProductionStatus.PLANNED for record in records)
        assert sum(record.quantity for record in records) == 5
        assert prep_sheet_service.get_prep_sheet(draft_sheet.id).status == PrepSheetStatus.COMPLETED

    def test_actual_quantities_override_plan(self, draft_sheet):
        first, second = _item_ids(draft_sheet.id)

        records = prep_sheet_service.complete_prep_sheet(draft_sheet.id, {first: 0, second: 4})

        assert sorted(record.quantity for record in records) == [0, 4]
        assert prep_sheet_service.get_prep_plan(draft_sheet.id).total_loaves == 4

    def test_records_carry_order_prices(self, draft_sheet, two_orders):
        records = prep_sheet_service.complete_prep_sheet(draft_sheet.id)

        by_order = {record.order_id: record for record in records}
        assert str(by_order[two_orders[1].id].sale_price) == "36.00"

    def test_second_completion_is_rejected(self, draft_sheet):
        prep_sheet_service.complete_prep_sheet(draft_sheet.id)

        with pytest.raises(InvalidState):
            prep_sheet_service.complete_prep_sheet(draft_sheet.id)
        assert _record_count() == 2

    def test_completed_sheet_is_frozen(self, draft_sheet, two_orders, sample_slot):
        prep_sheet_service.complete_prep_sheet(draft_sheet.id)

        with pytest.raises(InvalidState):
            prep_sheet_service.remove_order(draft_sheet.id, two_orders[0].id)
        with pytest.raises(InvalidState):
            prep_sheet_service.build_prep_sheet(sample_slot.date)

    def test_unknown_item_changes_nothing(self, draft_sheet):
        first, _ = _item_ids(draft_sheet.id)

        with pytest.raises(ValidationError):
            prep_sheet_service.complete_prep_sheet(draft_sheet.id, {first: 2, 99999: 1})

        assert prep_sheet_service.get_prep_sheet(draft_sheet.id).status == PrepSheetStatus.DRAFT
        assert _record_count() == 0

    def test_negative_quantity_changes_nothing(self, draft_sheet):
        first, _ = _item_ids(draft_sheet.id)

        with pytest.raises(ValidationError):
            prep_sheet_service.complete_prep_sheet(draft_sheet.id, {first: -1})
        assert _record_count() == 0

    def test_failure_after_first_record_changes_nothing(self, draft_sheet):
        first, second = _item_ids(draft_sheet.id)
        real_record = production_ledger.record_from_prep_item
        calls = []

        def fail_on_second(item, *, session):
            calls.append(item.id)
            if len(calls) == 2:
                raise DatabaseError("disk full")
            return real_record(item, session=session)

        with patch.object(production_ledger, "record_from_prep_item", side_effect=fail_on_second):
            with pytest.raises(DatabaseError):
                prep_sheet_service.complete_prep_sheet(draft_sheet.id, {first: 1, second: 4})

        assert len(calls) == 2
        assert _record_count() == 0
        with session_scope() as session:
            sheet = prep_sheet_service.get_prep_sheet(draft_sheet.id, session=session)
            assert sheet.status == PrepSheetStatus.DRAFT
            assert sheet.completed_at is None
            assert [item.actual_quantity for item in sheet.items] == [None, None]
