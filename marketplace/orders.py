"""Order lifecycle: placing orders, hosted checkout, payment reconciliation
and status changes.

Every multi-row mutation runs inside the session's transaction and is
committed once; any failure rolls the whole unit back. Stock is only ever
decremented through a conditional UPDATE so concurrent orders cannot push it
below zero.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import CHECKOUT_TTL_MINUTES, PUBLIC_APP_URL
from .errors import (
    ExternalServiceError,
    Forbidden,
    InsufficientStock,
    InvalidArgument,
    MarketplaceError,
    NotFound,
    ProductNotFound,
    ValidationError,
)
from .messaging import publish_event
from .models import Cart, CartItem, Order, OrderItem, Product
from .payments import (
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    SessionLine,
    StripeGateway,
    session_ttl_minutes,
    to_minor_units,
)

logger = structlog.get_logger(__name__)

PENDING = "PENDING"
PAID = "PAID"
SHIPPED = "SHIPPED"
DELIVERED = "DELIVERED"
CANCELLED = "CANCELLED"

STATUSES = (PENDING, PAID, SHIPPED, DELIVERED, CANCELLED)

# role -> current status -> statuses that role may set.
# Sellers and admins may move an order anywhere; buyers may only cancel.
TRANSITIONS: Dict[str, Dict[str, frozenset]] = {
    "BUYER": {status: frozenset({CANCELLED}) for status in STATUSES},
    "SELLER": {status: frozenset(STATUSES) for status in STATUSES},
    "ADMIN": {status: frozenset(STATUSES) for status in STATUSES},
}


@dataclass
class CheckoutResult:
    session_id: str
    url: str
    order_id: int


def decrement_stock(db: Session, product_id: int, quantity: int) -> bool:
    """Take ``quantity`` units off a product only if that many are left."""
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def clear_cart(db: Session, user_id: int) -> int:
    cart_ids = select(Cart.id).where(Cart.user_id == user_id)
    deleted = (
        db.query(CartItem)
        .filter(CartItem.cart_id.in_(cart_ids))
        .delete(synchronize_session=False)
    )
    return int(deleted or 0)


def _as_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def parse_order_lines(items: Any) -> List[Tuple[int, int]]:
    """Normalize ``[{"product_id", "quantity"}, ...]`` into (product_id, quantity) pairs.

    Duplicate product ids stay separate lines.
    """
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Order items are required")

    lines = []
    for item in items:
        if isinstance(item, dict):
            product_id, quantity = item.get("product_id"), item.get("quantity")
        else:
            product_id = getattr(item, "product_id", None)
            quantity = getattr(item, "quantity", None)

        if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
            raise ValidationError(f"Invalid product id: {product_id!r}")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError(f"Quantity for product {product_id} must be an integer")
        if quantity <= 0:
            raise ValidationError(f"Quantity for product {product_id} must be greater than 0")
        lines.append((product_id, quantity))
    return lines


class OrderLifecycle:
    def __init__(self, db: Session, gateway: Optional[StripeGateway] = None):
        self.db = db
        self.gateway = gateway

    # -----------------------------
    # Validation shared by both checkout paths
    # -----------------------------

    def _validate_lines(self, lines: Sequence[Tuple[int, int]]) -> List[Tuple[Product, int]]:
        product_ids = {pid for pid, _ in lines}
        products = self.db.query(Product).filter(Product.id.in_(product_ids)).all()
        by_id = {p.id: p for p in products}

        validated = []
        for product_id, quantity in lines:
            product = by_id.get(product_id)
            if product is None:
                raise ProductNotFound(product_id)
            if quantity > product.stock:
                raise InsufficientStock(product.id, product.name, product.stock, quantity)
            validated.append((product, quantity))
        return validated

    @staticmethod
    def _order_total(validated: Iterable[Tuple[Product, int]]) -> Decimal:
        return sum((Decimal(str(p.price)) * q for p, q in validated), Decimal("0"))

    @staticmethod
    def _build_items(validated: Iterable[Tuple[Product, int]]) -> List[OrderItem]:
        return [OrderItem(product_id=p.id, quantity=q, price=p.price) for p, q in validated]

    def _rollback_and_wrap(self, action: str, exc: SQLAlchemyError) -> ExternalServiceError:
        self.db.rollback()
        logger.error("store_transaction_failed", action=action, error=str(exc), exc_info=True)
        return ExternalServiceError("The order store is temporarily unavailable, please retry")

    # -----------------------------
    # Direct ("pay later") order
    # -----------------------------

    def create_order(self, buyer_id: int, items: Any, shipping_address: Optional[dict] = None) -> Order:
        lines = parse_order_lines(items)
        validated = self._validate_lines(lines)
        total = self._order_total(validated)

        try:
            order = Order(
                buyer_id=buyer_id,
                total=total,
                status=PENDING,
                shipping_address=shipping_address or None,
                items=self._build_items(validated),
            )
            self.db.add(order)
            self.db.flush()

            for product, quantity in validated:
                product_id, name = product.id, product.name
                if not decrement_stock(self.db, product_id, quantity):
                    # someone else took the stock between validation and write
                    self.db.rollback()
                    current = self.db.query(Product.stock).filter(Product.id == product_id).scalar()
                    self.db.rollback()
                    raise InsufficientStock(product_id, name, int(current or 0), quantity)

            clear_cart(self.db, buyer_id)
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._rollback_and_wrap("create_order", e) from e

        self.db.refresh(order)
        logger.info("order_created", order_id=order.id, buyer_id=buyer_id, total=str(order.total), lines=len(lines))
        publish_event(
            "order.created",
            {
                "order_id": order.id,
                "buyer_id": buyer_id,
                "total": str(order.total),
                "items": [{"product_id": i.product_id, "quantity": i.quantity} for i in order.items],
            },
        )
        return order

    # -----------------------------
    # Hosted payment checkout
    # -----------------------------

    def create_checkout(self, buyer_id: int, items: Any, shipping_address: Optional[dict] = None) -> CheckoutResult:
        if self.gateway is None:
            raise ExternalServiceError("Payment gateway is not configured")

        lines = parse_order_lines(items)
        validated = self._validate_lines(lines)
        total = self._order_total(validated)

        session_lines = [
            SessionLine(
                name=product.name,
                description=(product.description or "")[:200],
                unit_amount=to_minor_units(product.price),
                quantity=quantity,
                images=list(product.images or [])[:1],
            )
            for product, quantity in validated
        ]

        # Stock is reserved only once the payment is confirmed
        now = dt.datetime.now(dt.timezone.utc)
        expires_at = now + dt.timedelta(minutes=session_ttl_minutes(CHECKOUT_TTL_MINUTES))
        try:
            order = Order(
                buyer_id=buyer_id,
                total=total,
                status=PENDING,
                shipping_address=shipping_address or None,
                checkout_expires_at=expires_at,
                items=self._build_items(validated),
            )
            self.db.add(order)
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._rollback_and_wrap("create_checkout", e) from e

        order_id = order.id
        try:
            session = self.gateway.create_session(
                session_lines,
                success_url=f"{PUBLIC_APP_URL}/orders?success=true&orderId={order_id}",
                cancel_url=f"{PUBLIC_APP_URL}/cart?cancelled=true",
                metadata={"order_id": str(order_id), "buyer_id": str(buyer_id)},
                expires_at=int(expires_at.timestamp()),
            )
        except MarketplaceError:
            # the order holds no stock; the expiry sweep cancels it
            logger.error("checkout_session_orphaned", order_id=order_id, buyer_id=buyer_id)
            raise

        try:
            order.checkout_session_id = session.session_id
            if session.payment_reference:
                order.payment_intent_id = session.payment_reference
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._rollback_and_wrap("record_checkout_session", e) from e

        logger.info("checkout_started", order_id=order_id, buyer_id=buyer_id, session_id=session.session_id, total=str(total))
        publish_event(
            "order.checkout_started",
            {"order_id": order_id, "buyer_id": buyer_id, "session_id": session.session_id, "total": str(total)},
        )
        return CheckoutResult(session_id=session.session_id, url=session.url, order_id=order_id)

    # -----------------------------
    # Webhook reconciliation
    # -----------------------------

    def confirm_payment(self, order_id: int, payment_reference: Optional[str] = None) -> bool:
        """Mark a PENDING order as PAID, reserve its stock and clear the cart.

        Returns False without touching anything when the order is missing or no
        longer PENDING, which makes redelivered events harmless.
        """
        values = {"status": PAID}
        if payment_reference:
            values["payment_intent_id"] = payment_reference

        try:
            result = self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == PENDING)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                current = self.db.query(Order.status).filter(Order.id == order_id).scalar()
                self.db.rollback()
                if current is None:
                    logger.warning("payment_for_unknown_order", order_id=order_id, payment_reference=payment_reference)
                elif current == CANCELLED:
                    # charged after the sweep cancelled the order; needs a manual refund
                    logger.error("payment_for_cancelled_order", order_id=order_id, payment_reference=payment_reference)
                else:
                    logger.info("payment_already_reconciled", order_id=order_id, status=current)
                return False

            buyer_id = self.db.query(Order.buyer_id).filter(Order.id == order_id).scalar()
            lines = (
                self.db.query(OrderItem.product_id, OrderItem.quantity)
                .filter(OrderItem.order_id == order_id)
                .all()
            )
            for product_id, quantity in lines:
                if not decrement_stock(self.db, product_id, quantity):
                    logger.warning(
                        "stock_oversold_on_payment",
                        order_id=order_id,
                        product_id=product_id,
                        quantity=quantity,
                    )
            clear_cart(self.db, buyer_id)
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._rollback_and_wrap("confirm_payment", e) from e

        logger.info("payment_confirmed", order_id=order_id, payment_reference=payment_reference)
        publish_event(
            "order.paid",
            {
                "order_id": order_id,
                "buyer_id": buyer_id,
                "payment_id": payment_reference,
                "items": [{"product_id": pid, "quantity": qty} for pid, qty in lines],
            },
        )
        return True

    def record_payment_failure(self, order_id: Optional[int], payment_reference: Optional[str], reason: Optional[str] = None) -> None:
        # No transition: the order stays PENDING until it expires or an operator steps in
        logger.warning("payment_failed", order_id=order_id, payment_reference=payment_reference, reason=reason)
        publish_event(
            "payment.failed",
            {"order_id": order_id, "payment_id": payment_reference, "reason": reason},
        )

    def handle_payment_event(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        data = event.get("data")
        data_object = data.get("object") if isinstance(data, dict) else None
        if not isinstance(data_object, dict):
            data_object = {}
        metadata = data_object.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        order_id = _parse_order_id(metadata.get("order_id"))

        if event_type == PAYMENT_COMPLETED:
            if order_id is None:
                logger.warning("payment_event_without_order", event_type=event_type, event_id=event.get("id"))
                return
            reference = data_object.get("payment_intent") or data_object.get("id")
            self.confirm_payment(order_id, reference if isinstance(reference, str) else None)
        elif event_type == PAYMENT_FAILED:
            last_error = data_object.get("last_payment_error") or {}
            self.record_payment_failure(order_id, data_object.get("id"), last_error.get("message"))
        else:
            logger.info("payment_event_ignored", event_type=event_type, event_id=event.get("id"))

    # -----------------------------
    # Status changes
    # -----------------------------

    def update_status(self, actor: Dict, order_id: int, new_status: Any) -> Order:
        if new_status not in STATUSES:
            raise InvalidArgument(f"Status must be one of: {', '.join(STATUSES)}")

        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")

        role = actor.get("role")
        if role == "BUYER" and order.buyer_id != actor.get("id"):
            raise Forbidden("You can only update your own orders")

        allowed = TRANSITIONS.get(role, {}).get(order.status, frozenset())
        if new_status not in allowed:
            if role == "BUYER":
                raise Forbidden("Buyers can only cancel orders")
            raise Forbidden(f"Cannot change order status from {order.status} to {new_status}")

        previous = order.status
        try:
            order.status = new_status
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._rollback_and_wrap("update_status", e) from e

        self.db.refresh(order)
        logger.info("order_status_changed", order_id=order.id, previous=previous, status=new_status, actor_id=actor.get("id"), role=role)
        publish_event(
            "order.status_changed",
            {"order_id": order.id, "buyer_id": order.buyer_id, "previous": previous, "status": new_status},
        )
        return order

    # -----------------------------
    # Abandoned checkouts
    # -----------------------------

    def expire_checkouts(self, now: Optional[dt.datetime] = None) -> List[int]:
        """Cancel PENDING hosted-checkout orders whose payment window has passed.

        The expiry is compared in Python after normalizing to UTC; some
        databases hand back naive datetimes for timezone-aware columns.
        """
        now = _as_utc(now) or dt.datetime.now(dt.timezone.utc)
        candidates = (
            self.db.query(Order.id, Order.checkout_expires_at)
            .filter(Order.status == PENDING, Order.checkout_expires_at.isnot(None))
            .all()
        )
        expired_ids = [oid for oid, expires_at in candidates if _as_utc(expires_at) <= now]
        if not expired_ids:
            return []

        cancelled = []
        try:
            for oid in expired_ids:
                result = self.db.execute(
                    update(Order)
                    .where(Order.id == oid, Order.status == PENDING)
                    .values(status=CANCELLED)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    cancelled.append(oid)
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._rollback_and_wrap("expire_checkouts", e) from e

        for oid in cancelled:
            logger.info("checkout_expired", order_id=oid)
            publish_event("order.expired", {"order_id": oid})
        return cancelled


def _parse_order_id(value: Any) -> Optional[int]:
    try:
        order_id = int(value)
    except (TypeError, ValueError):
        return None
    return order_id if order_id > 0 else None
