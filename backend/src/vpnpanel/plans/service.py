"""Plan service."""

from typing import Any

from vpnpanel.errors import ConflictError, NotFoundError, ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.plans.models import Plan
from vpnpanel.storage.db import db
from vpnpanel.storage.pagination import paginate

logger = get_logger(__name__)

_UPDATABLE_FIELDS = (
    "name",
    "description",
    "price",
    "currency",
    "duration_days",
    "traffic_limit_gb",
    "device_limit",
    "is_active",
    "display_order",
)


class PlanService:
    """CRUD for plans."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def _validate(self, data: dict[str, Any]) -> None:
        if "price" in data and data["price"] is not None and data["price"] < 0:
            raise ValidationError("Price cannot be negative")
        if "duration_days" in data and data["duration_days"] is not None and data["duration_days"] <= 0:
            raise ValidationError("Duration must be at least one day")

    def list_plans(
        self,
        page: int = 1,
        limit: int = 20,
        is_active: bool | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(Plan)
            if is_active is not None:
                query = query.filter(Plan.is_active == is_active)
            query = query.order_by(Plan.display_order.asc(), Plan.id.asc())
            return paginate(query, page, limit)

    def get_active_plans(self) -> list[Plan]:
        """Plans offered to clients, in display order."""
        with db.session() as session:
            return (
                session.query(Plan)
                .filter(Plan.is_active == True)
                .order_by(Plan.display_order.asc(), Plan.price.asc())
                .all()
            )

    def get_plan(self, plan_id: int) -> Plan:
        with db.session() as session:
            plan = session.get(Plan, plan_id)
            if not plan:
                raise NotFoundError("Plan", plan_id)
            return plan

    def create_plan(self, **data: Any) -> Plan:
        self._validate(data)
        with db.session() as session:
            if session.query(Plan).filter(Plan.name == data["name"]).first():
                raise ConflictError(f"Plan with name '{data['name']}' already exists")

            plan = Plan(**{k: v for k, v in data.items() if k in _UPDATABLE_FIELDS and v is not None})
            session.add(plan)
            session.commit()
            session.refresh(plan)

            self.logger.info("plan_created", plan_id=plan.id, name=plan.name)
            return plan

    def update_plan(self, plan_id: int, **data: Any) -> Plan:
        self._validate(data)
        with db.session() as session:
            plan = session.get(Plan, plan_id)
            if not plan:
                raise NotFoundError("Plan", plan_id)

            new_name = data.get("name")
            if new_name and new_name != plan.name:
                if session.query(Plan).filter(Plan.name == new_name).first():
                    raise ConflictError(f"Plan with name '{new_name}' already exists")

            for field in _UPDATABLE_FIELDS:
                if field in data and data[field] is not None:
                    setattr(plan, field, data[field])

            session.commit()
            session.refresh(plan)

            self.logger.info("plan_updated", plan_id=plan_id)
            return plan

    def delete_plan(self, plan_id: int) -> None:
        """Delete a plan nobody ever subscribed to or paid for.

        Raises:
            ConflictError: If subscriptions or payments reference the plan
        """
        from vpnpanel.payments.models import Payment
        from vpnpanel.subscriptions.models import Subscription

        with db.session() as session:
            plan = session.get(Plan, plan_id)
            if not plan:
                raise NotFoundError("Plan", plan_id)

            in_use = session.query(Subscription.id).filter(Subscription.plan_id == plan_id).first()
            if in_use:
                raise ConflictError("Plan has subscriptions; deactivate it instead")
            if session.query(Payment.id).filter(Payment.plan_id == plan_id).first():
                raise ConflictError("Plan has payments; deactivate it instead")

            session.delete(plan)
            self.logger.info("plan_deleted", plan_id=plan_id)


plan_service = PlanService()
