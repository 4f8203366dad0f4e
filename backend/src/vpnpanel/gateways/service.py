"""Payment gateway management."""

from typing import Any

from vpnpanel.errors import ConflictError, NotFoundError, ValidationError
from vpnpanel.gateways.models import Gateway, GatewayType
from vpnpanel.logging_config import get_logger
from vpnpanel.storage.db import db

logger = get_logger(__name__)

_FIELDS = (
    "name",
    "type",
    "is_active",
    "is_default",
    "config",
    "display_order",
    "icon_url",
    "description",
    "supported_currencies",
    "min_amount",
    "max_amount",
    "fee_percent",
    "fee_fixed",
)


class GatewayService:
    """CRUD and fee rules for payment gateways.

    At most one gateway is the default; setting a new default clears the
    previous one inside the same transaction.
    """

    def __init__(self):
        self.logger = get_logger(__name__)

    def _validate(self, data: dict[str, Any]) -> None:
        for field in ("fee_percent", "fee_fixed", "min_amount", "max_amount"):
            value = data.get(field)
            if value is not None and value < 0:
                raise ValidationError(f"{field} cannot be negative")
        if data.get("fee_percent") is not None and data["fee_percent"] > 100:
            raise ValidationError("fee_percent cannot exceed 100")
        min_amount, max_amount = data.get("min_amount"), data.get("max_amount")
        if min_amount is not None and max_amount is not None and min_amount > max_amount:
            raise ValidationError("min_amount cannot exceed max_amount")

    def _clear_default(self, session, keep_id: int | None = None) -> None:
        query = session.query(Gateway).filter(Gateway.is_default == True)
        if keep_id is not None:
            query = query.filter(Gateway.id != keep_id)
        query.update({Gateway.is_default: False}, synchronize_session=False)

    # ==================== QUERIES ====================

    def list_gateways(self, type: GatewayType | None = None, is_active: bool | None = None) -> list[Gateway]:
        with db.session() as session:
            query = session.query(Gateway)
            if type is not None:
                query = query.filter(Gateway.type == type)
            if is_active is not None:
                query = query.filter(Gateway.is_active == is_active)
            return query.order_by(Gateway.display_order.asc(), Gateway.id.asc()).all()

    def get_active_gateways(self) -> list[Gateway]:
        return self.list_gateways(is_active=True)

    def get_gateways_by_type(self, type: GatewayType) -> list[Gateway]:
        return self.list_gateways(type=type)

    def get_gateway(self, gateway_id: int) -> Gateway:
        with db.session() as session:
            gateway = session.get(Gateway, gateway_id)
            if not gateway:
                raise NotFoundError("Gateway", gateway_id)
            return gateway

    def get_default_gateway(self) -> Gateway | None:
        """Active default gateway, if any."""
        with db.session() as session:
            return (
                session.query(Gateway)
                .filter(Gateway.is_default == True, Gateway.is_active == True)
                .first()
            )

    # ==================== MUTATIONS ====================

    def create_gateway(self, **data: Any) -> Gateway:
        self._validate(data)
        with db.session() as session:
            if session.query(Gateway.id).filter(Gateway.name == data["name"]).first():
                raise ConflictError(f"Gateway with name '{data['name']}' already exists")

            if data.get("is_default"):
                self._clear_default(session)

            gateway = Gateway(**{k: v for k, v in data.items() if k in _FIELDS and v is not None})
            session.add(gateway)
            session.commit()
            session.refresh(gateway)

            self.logger.info("gateway_created", gateway_id=gateway.id, name=gateway.name, type=gateway.type.value)
            return gateway

    def update_gateway(self, gateway_id: int, **data: Any) -> Gateway:
        with db.session() as session:
            gateway = session.get(Gateway, gateway_id)
            if not gateway:
                raise NotFoundError("Gateway", gateway_id)

            merged = {
                "min_amount": gateway.min_amount,
                "max_amount": gateway.max_amount,
                **{k: v for k, v in data.items() if v is not None},
            }
            self._validate(merged)

            new_name = data.get("name")
            if new_name and new_name != gateway.name:
                if session.query(Gateway.id).filter(Gateway.name == new_name).first():
                    raise ConflictError(f"Gateway with name '{new_name}' already exists")

            if data.get("is_default"):
                self._clear_default(session, keep_id=gateway_id)

            for field in _FIELDS:
                if field in data and data[field] is not None:
                    setattr(gateway, field, data[field])

            session.commit()
            session.refresh(gateway)

            self.logger.info("gateway_updated", gateway_id=gateway_id)
            return gateway

    def delete_gateway(self, gateway_id: int) -> None:
        """Delete a gateway.

        Raises:
            ConflictError: If the gateway is the default one
        """
        with db.session() as session:
            gateway = session.get(Gateway, gateway_id)
            if not gateway:
                raise NotFoundError("Gateway", gateway_id)
            if gateway.is_default:
                raise ConflictError("Cannot delete the default gateway; set another default first")

            session.delete(gateway)
            self.logger.info("gateway_deleted", gateway_id=gateway_id)

    def toggle_gateway(self, gateway_id: int) -> Gateway:
        with db.session() as session:
            gateway = session.get(Gateway, gateway_id)
            if not gateway:
                raise NotFoundError("Gateway", gateway_id)

            gateway.is_active = not gateway.is_active
            session.commit()
            session.refresh(gateway)

            self.logger.info("gateway_toggled", gateway_id=gateway_id, is_active=gateway.is_active)
            return gateway

    def set_default_gateway(self, gateway_id: int) -> Gateway:
        with db.session() as session:
            gateway = session.get(Gateway, gateway_id)
            if not gateway:
                raise NotFoundError("Gateway", gateway_id)
            if not gateway.is_active:
                raise ValidationError("Inactive gateway cannot be the default")

            self._clear_default(session, keep_id=gateway_id)
            gateway.is_default = True
            session.commit()
            session.refresh(gateway)

            self.logger.info("gateway_default_set", gateway_id=gateway_id)
            return gateway

    # ==================== FEES ====================

    def calculate_fee(self, gateway_id: int, amount: float) -> dict[str, float]:
        gateway = self.get_gateway(gateway_id)
        fee = gateway.calculate_fee(amount)
        return {"amount": round(amount, 2), "fee": fee, "total": round(amount + fee, 2)}

    def validate_amount(self, gateway: Gateway, amount: float, currency: str) -> None:
        """Check that the gateway accepts a payment.

        Raises:
            ValidationError: If the currency is unsupported or the amount is out of limits
        """
        if amount <= 0:
            raise ValidationError("Amount must be positive")
        currencies = [c.upper() for c in (gateway.supported_currencies or [])]
        if currencies and currency.upper() not in currencies:
            raise ValidationError(f"Gateway '{gateway.name}' does not support {currency}")
        if gateway.min_amount is not None and amount < gateway.min_amount:
            raise ValidationError(f"Minimum amount for '{gateway.name}' is {gateway.min_amount}")
        if gateway.max_amount is not None and amount > gateway.max_amount:
            raise ValidationError(f"Maximum amount for '{gateway.name}' is {gateway.max_amount}")


gateway_service = GatewayService()
