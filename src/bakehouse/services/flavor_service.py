"""
Flavor Service - Bread catalog management.

This service provides:
- Flavor CRUD with validated size/price lists
- Duplication (copy a flavor and its active recipe as a starting point)
- Activation and season changes, published to the external store
"""

from contextlib import nullcontext
from typing import Any, Dict, List, Optional

from bakehouse.models import ExtraProduction, Flavor, PrepSheetItem, ProductionRecord, Recipe
from bakehouse.models.flavor import parse_sizes, validate_season
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import InvalidState, NotFound, ValidationError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.services.sync.publisher import enqueue_change
from bakehouse.utils.constants import SEASONS
from bakehouse.utils.validators import sanitize_string

logger = get_service_logger(__name__)

EDITABLE_FIELDS = ("name", "description", "sizes", "is_active", "season", "sort_order", "estimated_cost")


def _get(session, flavor_id: int) -> Flavor:
    flavor = session.get(Flavor, flavor_id)
    if flavor is None:
        raise NotFound("flavor", flavor_id)
    return flavor


def _validate(data: Dict[str, Any], creating: bool) -> None:
    errors = []
    if creating or "name" in data:
        if not sanitize_string(data.get("name"), 200):
            errors.append("Name: This field is required")
    if creating or "sizes" in data:
        try:
            sizes = parse_sizes(data.get("sizes"))
            if not sizes:
                errors.append("Sizes: At least one size is required")
        except ValidationError as e:
            errors.extend(e.errors)
    if "season" in data and not validate_season(data["season"]):
        errors.append(f"Season must be one of {SEASONS}")
    if "sort_order" in data and (
        isinstance(data["sort_order"], bool) or not isinstance(data["sort_order"], int)
    ):
        errors.append("Sort order: Must be a whole number")
    if errors:
        raise ValidationError(errors)


def create_flavor(data: Dict[str, Any], *, session=None) -> Flavor:
    """
    Create a flavor.

    Args:
        data: name, sizes ([{"name", "price"}], at least one), description,
            is_active, season, sort_order, estimated_cost

    Raises:
        ValidationError: If the name or sizes are invalid
    """
    _validate(data, creating=True)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        flavor = Flavor(
            name=sanitize_string(data["name"], 200),
            description=data.get("description"),
            is_active=data.get("is_active", True),
            season=data.get("season", "year_round"),
            sort_order=data.get("sort_order", 0),
            estimated_cost=data.get("estimated_cost"),
        )
        flavor.sizes = data["sizes"]
        session.add(flavor)
        session.flush()
        enqueue_change(session, flavor)
        log_operation(logger, operation="create_flavor", outcome="success", flavor_id=flavor.id)
        return flavor


def get_flavor(flavor_id: int, *, session=None) -> Flavor:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return _get(session, flavor_id)


def get_flavor_by_uuid(flavor_uuid: str, *, session=None) -> Optional[Flavor]:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return session.query(Flavor).filter(Flavor.uuid == flavor_uuid).first()


def list_flavors(
    *, active_only: bool = False, season: Optional[str] = None, session=None
) -> List[Flavor]:
    """List flavors by sort order, optionally only active ones or one season."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(Flavor)
        if active_only:
            query = query.filter(Flavor.is_active.is_(True))
        if season:
            query = query.filter(Flavor.season == season)
        return query.order_by(Flavor.sort_order, Flavor.name).all()


def update_flavor(flavor_id: int, data: Dict[str, Any], *, session=None) -> Flavor:
    _validate(data, creating=False)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        flavor = _get(session, flavor_id)
        for key in EDITABLE_FIELDS:
            if key not in data:
                continue
            if key == "sizes":
                flavor.sizes = data["sizes"]
            elif key == "name":
                flavor.name = sanitize_string(data["name"], 200)
            else:
                setattr(flavor, key, data[key])
        session.flush()
        enqueue_change(session, flavor)
        log_operation(logger, operation="update_flavor", outcome="success", flavor_id=flavor_id)
        return flavor


def duplicate_flavor(flavor_id: int, new_name: Optional[str] = None, *, session=None) -> Flavor:
    """
    Copy a flavor (inactive) together with a copy of its active recipe.

    Returns:
        The new Flavor
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        source = _get(session, flavor_id)
        copy = Flavor(
            name=sanitize_string(new_name, 200) if new_name else f"{source.name} (Copy)",
            description=source.description,
            sizes_json=source.sizes_json,
            is_active=False,
            season=source.season,
            sort_order=source.sort_order,
            estimated_cost=source.estimated_cost,
        )
        session.add(copy)
        session.flush()

        recipe = source.active_recipe
        if recipe is not None:
            session.add(
                Recipe(
                    flavor_id=copy.id,
                    name=f"{recipe.name} (Copy)",
                    base_ingredients_json=recipe.base_ingredients_json,
                    fold_ingredients_json=recipe.fold_ingredients_json,
                    lamination_ingredients_json=recipe.lamination_ingredients_json,
                    steps_json=recipe.steps_json,
                    yields_loaves=recipe.yields_loaves,
                    loaf_size=recipe.loaf_size,
                    notes=recipe.notes,
                    season=recipe.season,
                    source=recipe.source,
                    is_active=True,
                )
            )
            session.flush()

        enqueue_change(session, copy)
        log_operation(
            logger,
            operation="duplicate_flavor",
            outcome="success",
            source_id=flavor_id,
            flavor_id=copy.id,
        )
        return copy


def delete_flavor(flavor_id: int, *, session=None) -> None:
    """
    Delete a flavor that was never planned or produced.

    Raises:
        InvalidState: If production history references the flavor (deactivate it instead)
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        flavor = _get(session, flavor_id)
        references = sum(
            session.query(model).filter(model.flavor_id == flavor_id).count()
            for model in (ExtraProduction, PrepSheetItem, ProductionRecord)
        )
        if references:
            raise InvalidState(
                "flavor", flavor_id, f"used by {references} production record(s)", "delete flavor"
            )
        enqueue_change(session, flavor)
        for recipe in list(flavor.recipes):
            recipe.flavor_id = None
        session.delete(flavor)
        session.flush()
        log_operation(logger, operation="delete_flavor", outcome="success", flavor_id=flavor_id)
