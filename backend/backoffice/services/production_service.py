"""Production lifecycle and the staff-request / admin-approval workflow.

Admins act directly. Staff create, update and delete requests are parked
as Pending on the run and only take effect when an admin approves them.
Stock is deducted once per run, at the moment it becomes Approved.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.core.email import send_email
from backoffice.core.rbac import TokenData
from backoffice.models.production import (
    ApprovalAction,
    ApprovalStatus,
    ProductionRun,
    ProductionStatus,
)
from backoffice.services.costing_service import CostingService
from backoffice.services.errors import (
    EntityNotFoundError,
    InvalidApprovalStateError,
    InvalidTransitionError,
    RoleNotAuthorizedError,
    ValidationFailedError,
)
from backoffice.services.menu_servings_service import MenuServingsService
from backoffice.services.stock_deduction_service import StockDeductionService

logger = logging.getLogger(__name__)

# Fields a staff update request may propose
UPDATABLE_FIELDS = ("quantity", "production_date", "status", "actual_cost", "notes")


def _encode(changes: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-safe copy of proposed changes."""
    encoded = {}
    for key, value in changes.items():
        if isinstance(value, date):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = str(value)
        elif isinstance(value, ProductionStatus):
            value = value.value
        encoded[key] = value
    return encoded


def _decode(changes: Dict[str, Any]) -> Dict[str, Any]:
    decoded = dict(changes)
    if decoded.get("production_date") is not None:
        decoded["production_date"] = date.fromisoformat(decoded["production_date"])
    if decoded.get("actual_cost") is not None:
        decoded["actual_cost"] = Decimal(decoded["actual_cost"])
    return decoded


class ProductionService:
    def __init__(self, db: Session):
        self.db = db
        self.deductions = StockDeductionService(db)
        self.servings = MenuServingsService(db)
        self.costing = CostingService(db)

    # ===== READS =====

    def get(self, production_id: int) -> ProductionRun:
        run = self.db.get(ProductionRun, production_id)
        if run is None:
            raise EntityNotFoundError("Production", production_id)
        return run

    def list_productions(
        self,
        status: Optional[str] = None,
        menu_maintenance_id: Optional[int] = None,
        approval_status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[ProductionRun]:
        query = self.db.query(ProductionRun)
        if status:
            query = query.filter(ProductionRun.status == status)
        if menu_maintenance_id is not None:
            query = query.filter(ProductionRun.menu_maintenance_id == menu_maintenance_id)
        if approval_status:
            query = query.filter(ProductionRun.approval_status == approval_status)
        if start_date:
            query = query.filter(ProductionRun.production_date >= start_date)
        if end_date:
            query = query.filter(ProductionRun.production_date <= end_date)
        return query.order_by(ProductionRun.production_date.desc(), ProductionRun.id.desc()).all()

    def stats(self) -> Dict[str, int]:
        by_status = dict(
            self.db.query(ProductionRun.status, func.count(ProductionRun.id))
            .group_by(ProductionRun.status)
            .all()
        )
        pending = (
            self.db.query(func.count(ProductionRun.id))
            .filter(ProductionRun.approval_status == ApprovalStatus.PENDING.value)
            .scalar()
        )
        return {
            "total": sum(by_status.values()),
            "planned": by_status.get(ProductionStatus.PLANNED.value, 0),
            "in_progress": by_status.get(ProductionStatus.IN_PROGRESS.value, 0),
            "completed": by_status.get(ProductionStatus.COMPLETED.value, 0),
            "cancelled": by_status.get(ProductionStatus.CANCELLED.value, 0),
            "pending_approval": pending or 0,
        }

    # ===== MUTATIONS =====

    def create(self, data: Dict[str, Any], actor: TokenData) -> ProductionRun:
        """Create a run; admins deduct immediately, staff requests wait."""
        menu = self.costing.recipes.get_menu(data["menu_maintenance_id"])
        status = ProductionStatus(data.get("status") or ProductionStatus.PLANNED.value)
        if status == ProductionStatus.CANCELLED:
            raise InvalidTransitionError("A production cannot be created as Cancelled")

        expected_cost, srp = self.costing.production_figures(menu.id, data["quantity"])
        run = ProductionRun(
            menu_maintenance_id=menu.id,
            quantity=data["quantity"],
            production_date=data.get("production_date") or date.today(),
            status=status.value,
            notes=data.get("notes"),
            actual_cost=data.get("actual_cost"),
            expected_cost=expected_cost,
            srp=srp,
            requested_by=actor.id,
            created_by=actor.id,
        )

        if actor.is_privileged:
            run.approval_status = ApprovalStatus.APPROVED.value
            run.approved_by = actor.id
            run.approved_at = datetime.now(timezone.utc)
            self.db.add(run)
            try:
                self.db.flush()
                self._deduct(run, actor)
                if run.status == ProductionStatus.COMPLETED.value:
                    self.servings.merge_from_production(run, actor.id)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            logger.info(f"Production {run.id} created and approved by admin {actor.id}")
        else:
            run.approval_status = ApprovalStatus.PENDING.value
            run.approval_action = ApprovalAction.CREATE.value
            self.db.add(run)
            self.db.commit()
            logger.info(f"Production {run.id} requested by staff {actor.id}; awaiting approval")
            self._notify_pending(run, menu.name, ApprovalAction.CREATE)

        self.db.refresh(run)
        return run

    def update(self, production_id: int, changes: Dict[str, Any], actor: TokenData) -> ProductionRun:
        run = self.get(production_id)
        changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS and v is not None}
        if not changes:
            raise ValidationFailedError("No changes supplied")
        self._validate_changes(run, changes)

        if not actor.is_privileged:
            if run.approval_status == ApprovalStatus.PENDING.value:
                raise InvalidApprovalStateError(
                    f"Production {run.id} already has a pending {run.approval_action} request"
                )
            run.approval_status = ApprovalStatus.PENDING.value
            run.approval_action = ApprovalAction.UPDATE.value
            run.pending_changes = _encode(changes)
            run.requested_by = actor.id
            run.approval_notes = None
            run.increment_version()
            self.db.commit()
            self.db.refresh(run)
            logger.info(f"Staff {actor.id} requested update of production {run.id}")
            self._notify_pending(run, run.menu.name, ApprovalAction.UPDATE)
            return run

        if run.approval_status == ApprovalStatus.PENDING.value:
            raise InvalidApprovalStateError(
                f"Production {run.id} has a pending {run.approval_action} request; "
                f"approve or reject it first"
            )
        try:
            self._apply_changes(run, changes, actor)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(run)
        logger.info(f"Production {run.id} updated by admin {actor.id}")
        return run

    def delete(self, production_id: int, actor: TokenData) -> Optional[ProductionRun]:
        """Admins delete outright; staff get a pending delete request back."""
        run = self.get(production_id)
        if actor.is_privileged:
            deducted = run.inventory_deducted
            self.db.delete(run)
            self.db.commit()
            logger.info(
                f"Production {production_id} deleted by admin {actor.id} "
                f"(inventory_deducted={deducted})"
            )
            return None

        if run.approval_status == ApprovalStatus.PENDING.value:
            raise InvalidApprovalStateError(
                f"Production {run.id} already has a pending {run.approval_action} request"
            )
        run.approval_status = ApprovalStatus.PENDING.value
        run.approval_action = ApprovalAction.DELETE.value
        run.pending_changes = None
        run.requested_by = actor.id
        run.approval_notes = None
        run.increment_version()
        self.db.commit()
        self.db.refresh(run)
        logger.info(f"Staff {actor.id} requested deletion of production {run.id}")
        self._notify_pending(run, run.menu.name, ApprovalAction.DELETE)
        return run

    def approve(
        self,
        production_id: int,
        decision: str,
        actor: TokenData,
        notes: Optional[str] = None,
    ) -> Optional[ProductionRun]:
        """Record an admin decision on a pending request.

        Returns the run, or None when an approved delete removed it.
        """
        if not actor.is_privileged:
            raise RoleNotAuthorizedError("Only admins can approve production requests")
        decision = ApprovalStatus(decision)
        if decision == ApprovalStatus.PENDING:
            raise ValidationFailedError("Decision must be Approved or Rejected")

        run = self.get(production_id)
        if run.approval_status != ApprovalStatus.PENDING.value:
            raise InvalidApprovalStateError(
                f"Production {run.id} is not pending approval "
                f"(approval_status={run.approval_status})",
                approval_status=run.approval_status,
            )
        action = ApprovalAction(run.approval_action or ApprovalAction.CREATE.value)

        if decision == ApprovalStatus.REJECTED:
            run.approval_status = ApprovalStatus.REJECTED.value
            run.pending_changes = None
            self._stamp(run, actor, notes)
            self.db.commit()
            self.db.refresh(run)
            logger.info(f"Production {run.id} {action.value} request rejected by admin {actor.id}")
            return run

        if action == ApprovalAction.DELETE:
            self.db.delete(run)
            self.db.commit()
            logger.info(f"Production {production_id} deleted on approval by admin {actor.id}")
            return None

        try:
            if action == ApprovalAction.UPDATE and run.pending_changes:
                changes = _decode(run.pending_changes)
                self._validate_changes(run, changes)
                self._apply_changes(run, changes, actor, approving=True)
            else:
                self._deduct(run, actor)
                if run.status == ProductionStatus.COMPLETED.value:
                    self.servings.merge_from_production(run, actor.id)
            run.approval_status = ApprovalStatus.APPROVED.value
            run.pending_changes = None
            self._stamp(run, actor, notes)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.warning(f"Approval of production {production_id} aborted", exc_info=True)
            raise
        self.db.refresh(run)
        logger.info(f"Production {run.id} {action.value} request approved by admin {actor.id}")
        return run

    # ===== HELPERS =====

    def _deduct(self, run: ProductionRun, actor: TokenData) -> None:
        if run.inventory_deducted:
            return
        run.deductions = self.deductions.deduct(
            run.menu_maintenance_id,
            run.quantity,
            operation_key=run.operation_key,
            ref_id=run.id,
            created_by=actor.id,
        )
        run.inventory_deducted = True

    def _validate_changes(self, run: ProductionRun, changes: Dict[str, Any]) -> None:
        if "status" in changes:
            new_status = ProductionStatus(changes["status"]).value
            changes["status"] = new_status
            if not run.can_transition_to(new_status):
                raise InvalidTransitionError(
                    f"Cannot move production {run.id} from {run.status} to {new_status}",
                    current_status=run.status,
                    requested_status=new_status,
                )
        if "quantity" in changes:
            if changes["quantity"] <= 0:
                raise ValidationFailedError("quantity must be greater than 0")
            if run.inventory_deducted and changes["quantity"] != run.quantity:
                raise InvalidTransitionError(
                    f"Quantity of production {run.id} is fixed once stock has been deducted"
                )

    def _apply_changes(
        self,
        run: ProductionRun,
        changes: Dict[str, Any],
        actor: TokenData,
        approving: bool = False,
    ) -> None:
        becomes_completed = (
            changes.get("status") == ProductionStatus.COMPLETED.value
            and run.status != ProductionStatus.COMPLETED.value
        )
        for field, value in changes.items():
            setattr(run, field, value)
        if "quantity" in changes:
            run.expected_cost, run.srp = self.costing.production_figures(
                run.menu_maintenance_id, run.quantity
            )
        run.increment_version()

        # A run that was never approved has not taken its stock yet. A rejected
        # request on a run that already took stock keeps its lifecycle.
        if (
            approving
            or run.inventory_deducted
            or run.approval_status == ApprovalStatus.APPROVED.value
        ):
            self._deduct(run, actor)
            if becomes_completed:
                self.servings.merge_from_production(run, actor.id)

    @staticmethod
    def _stamp(run: ProductionRun, actor: TokenData, notes: Optional[str]) -> None:
        run.approved_by = actor.id
        run.approved_at = datetime.now(timezone.utc)
        run.approval_notes = notes

    def _notify_pending(self, run: ProductionRun, menu_name: str, action: ApprovalAction) -> None:
        if not settings.approval_notify_email:
            return
        sent = send_email(
            settings.approval_notify_email,
            f"Production {action.value.lower()} request awaiting approval",
            (
                f"Production #{run.id} ({menu_name} x{run.quantity}, {run.status}) "
                f"has a pending {action.value} request from user {run.requested_by}."
            ),
        )
        if not sent:
            logger.warning(f"Approval notification for production {run.id} was not sent")
