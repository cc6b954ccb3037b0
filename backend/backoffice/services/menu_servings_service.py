"""Menu servings counter.

``MenuItem.servings`` is the number of ready-to-sell portions. It goes up
when a production run completes and down when orders take portions; it
never drops below zero, decrements are conditional UPDATEs.
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from backoffice.models.menu import (
    MenuCosting,
    MenuItem,
    MenuMaintenance,
    ServingsMovement,
    ServingsReason,
)
from backoffice.models.production import ProductionRun
from backoffice.services.errors import (
    EntityNotFoundError,
    InsufficientServingsError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)


def _aggregate(lines: Iterable[Tuple[int, int]]) -> "OrderedDict[int, int]":
    totals: "OrderedDict[int, int]" = OrderedDict()
    for menu_item_id, quantity in lines:
        totals[menu_item_id] = totals.get(menu_item_id, 0) + int(quantity)
    return totals


class MenuServingsService:
    def __init__(self, db: Session):
        self.db = db

    def get_item(self, menu_item_id: int) -> MenuItem:
        item = self.db.get(MenuItem, menu_item_id)
        if item is None:
            raise EntityNotFoundError("Menu item", menu_item_id)
        return item

    def list_items(
        self,
        category: Optional[str] = None,
        available_only: bool = False,
        search: Optional[str] = None,
    ) -> List[MenuItem]:
        query = self.db.query(MenuItem)
        if category:
            query = query.filter(MenuItem.category == category)
        if available_only:
            query = query.filter(MenuItem.is_available.is_(True))
        if search:
            query = query.filter(MenuItem.name.ilike(f"%{search}%"))
        return query.order_by(MenuItem.name).all()

    def list_movements(self, menu_item_id: int, limit: int = 100) -> List[ServingsMovement]:
        self.get_item(menu_item_id)
        return (
            self.db.query(ServingsMovement)
            .filter(ServingsMovement.menu_item_id == menu_item_id)
            .order_by(ServingsMovement.id.desc())
            .limit(limit)
            .all()
        )

    def has_sufficient_servings(self, menu_item_id: int, quantity: int) -> bool:
        return self.get_item(menu_item_id).has_sufficient_servings(quantity)

    # ===== AVAILABILITY =====

    def check_availability(self, lines: Iterable[Tuple[int, int]]) -> Dict[str, Any]:
        """Requested vs available servings for a cart.

        Quantities of repeated items are summed before checking.
        """
        results = []
        for menu_item_id, requested in _aggregate(lines).items():
            item = self.db.get(MenuItem, menu_item_id)
            if item is None:
                results.append({
                    "menu_item_id": menu_item_id,
                    "name": None,
                    "requested": requested,
                    "available": 0,
                    "sufficient": False,
                })
                continue
            results.append({
                "menu_item_id": item.id,
                "name": item.name,
                "requested": requested,
                "available": item.servings,
                "sufficient": item.has_sufficient_servings(requested),
            })
        return {
            "all_available": all(r["sufficient"] for r in results),
            "items": results,
        }

    def ensure_available(self, lines: Iterable[Tuple[int, int]]) -> None:
        """Raise InsufficientServingsError listing every short item."""
        lines = list(lines)
        for menu_item_id, _quantity in lines:
            self.get_item(menu_item_id)
        check = self.check_availability(lines)
        if not check["all_available"]:
            raise InsufficientServingsError(
                [
                    {k: r[k] for k in ("menu_item_id", "name", "requested", "available")}
                    for r in check["items"]
                    if not r["sufficient"]
                ]
            )

    def toggle_availability(self, menu_item_id: int, actor_id: Optional[int] = None) -> MenuItem:
        item = self.get_item(menu_item_id)
        if item.is_available:
            item.is_available = False
            item.manually_disabled = True
        else:
            if item.servings <= 0:
                raise ValidationFailedError(
                    f"'{item.name}' has no servings left and cannot be enabled"
                )
            item.is_available = True
            item.manually_disabled = False
        item.updated_by = actor_id
        self.db.commit()
        self.db.refresh(item)
        logger.info(
            f"Menu item {item.id} '{item.name}' "
            f"{'enabled' if item.is_available else 'disabled'} by user {actor_id}"
        )
        return item

    # ===== COUNTER MUTATIONS (caller commits) =====

    def _apply(
        self,
        item: MenuItem,
        delta: int,
        reason: str,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
        actor_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> MenuItem:
        self.db.flush()
        statement = update(MenuItem).where(MenuItem.id == item.id)
        if delta < 0:
            statement = statement.where(MenuItem.servings >= -delta)
        result = self.db.execute(
            statement.values(servings=MenuItem.servings + delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.refresh(item)
            raise InsufficientServingsError([{
                "menu_item_id": item.id,
                "name": item.name,
                "requested": -delta,
                "available": item.servings,
            }])

        self.db.refresh(item)
        item.refresh_availability()
        if actor_id is not None:
            item.updated_by = actor_id
        self.db.add(ServingsMovement(
            menu_item_id=item.id,
            delta=delta,
            servings_after=item.servings,
            reason=reason,
            ref_type=ref_type,
            ref_id=ref_id,
            notes=notes,
            created_by=actor_id,
        ))
        logger.info(
            f"Servings {delta:+d} for '{item.name}' ({reason}"
            f"{f' {ref_type}:{ref_id}' if ref_type else ''}); now {item.servings}"
        )
        return item

    def deduct_for_lines(
        self,
        lines: Iterable[Tuple[int, int]],
        ref_type: str,
        ref_id: int,
        actor_id: Optional[int] = None,
    ) -> None:
        """Take servings for every line, or none at all."""
        totals = _aggregate(lines)
        self.ensure_available(totals.items())
        savepoint = self.db.begin_nested()
        try:
            for menu_item_id, quantity in totals.items():
                self._apply(
                    self.get_item(menu_item_id), -quantity, ServingsReason.ORDER.value,
                    ref_type=ref_type, ref_id=ref_id, actor_id=actor_id,
                )
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            raise

    def restore_for_lines(
        self,
        lines: Iterable[Tuple[int, int]],
        reason: str,
        ref_type: str,
        ref_id: int,
        actor_id: Optional[int] = None,
    ) -> None:
        for menu_item_id, quantity in _aggregate(lines).items():
            item = self.db.get(MenuItem, menu_item_id)
            if item is None:
                logger.warning(
                    f"Menu item {menu_item_id} vanished; cannot restore {quantity} "
                    f"servings for {ref_type}:{ref_id}"
                )
                continue
            self._apply(item, quantity, reason, ref_type=ref_type, ref_id=ref_id, actor_id=actor_id)

    def adjust_servings(
        self,
        menu_item_id: int,
        delta: int,
        reason: str = ServingsReason.ADJUSTMENT.value,
        notes: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> MenuItem:
        """Manual correction of the counter; commits."""
        if delta == 0:
            raise ValidationFailedError("delta must not be zero")
        item = self.get_item(menu_item_id)
        self._apply(item, delta, reason, ref_type="adjustment", actor_id=actor_id, notes=notes)
        self.db.commit()
        self.db.refresh(item)
        return item

    # ===== PRODUCTION MERGE =====

    def merge_from_production(self, run: ProductionRun, actor_id: Optional[int] = None) -> MenuItem:
        """Add a completed run's pieces to its sellable menu item.

        The menu item is keyed by ``menu_maintenance_id`` and created on the
        first completion. A run is merged at most once; a repeated call
        returns the item unchanged.
        """
        already_merged = (
            self.db.query(ServingsMovement.id)
            .filter(
                ServingsMovement.reason == ServingsReason.PRODUCTION.value,
                ServingsMovement.ref_type == "production",
                ServingsMovement.ref_id == run.id,
            )
            .first()
        )
        item = (
            self.db.query(MenuItem)
            .filter(MenuItem.menu_maintenance_id == run.menu_maintenance_id)
            .first()
        )
        if already_merged is not None and item is not None:
            logger.warning(f"Production {run.id} already merged into menu item {item.id}")
            return item

        if item is None:
            menu = self.db.get(MenuMaintenance, run.menu_maintenance_id)
            if menu is None:
                raise EntityNotFoundError("Menu", run.menu_maintenance_id)
            costing = (
                self.db.query(MenuCosting)
                .filter(MenuCosting.menu_maintenance_id == menu.id)
                .first()
            )
            item = MenuItem(
                menu_maintenance_id=menu.id,
                name=menu.name,
                description=menu.description,
                category=menu.category,
                image_url=menu.image_url,
                critical_level=menu.critical_level,
                price=costing.srp if costing else run.srp,
                servings=0,
                updated_by=actor_id,
            )
            self.db.add(item)
            self.db.flush()
            logger.info(f"Created menu item {item.id} for '{menu.name}' from production {run.id}")

        self._apply(
            item, run.quantity, ServingsReason.PRODUCTION.value,
            ref_type="production", ref_id=run.id, actor_id=actor_id,
        )
        item.last_production_id = run.id
        return item
