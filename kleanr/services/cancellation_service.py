import logging
from datetime import date, datetime
from typing import Optional, Protocol
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from kleanr.models.cancellation import (
    CancellationDecision,
    CancellationInput,
    ChargeResult,
    FeeSettlement,
    FeeSettlementOutcome,
)
from kleanr.models.user_bill import UserBill
from kleanr.services.config_store_service import get_active_cancellation_policy
from kleanr.utils.errors import InputValidationError
from kleanr.utils.rounding import fraction_of

logger = logging.getLogger(__name__)


class PaymentProcessor(Protocol):
    """Colaborador externo que cobra la multa de cancelación."""

    def charge(self, user_id: UUID, amount: int, description: str) -> ChargeResult:
        ...


def days_until_appointment(appointment_date: date, today: Optional[date] = None) -> int:
    """Días calendario hasta la cita; negativo si ya pasó."""
    if isinstance(appointment_date, datetime):
        appointment_date = appointment_date.date()
    today = today or date.today()
    if isinstance(today, datetime):
        today = today.date()
    return (appointment_date - today).days


def evaluate_cancellation(data: CancellationInput) -> CancellationDecision:
    """
    Decide multa y reembolso de una cancelación.

    - Dentro de la ventana si faltan `window_days` días o menos (incluye el
      mismo día y citas vencidas).
    - Sin limpiador asignado nunca hay multa y el reembolso es total.
    - Un método de pago registrado siempre desbloquea la cancelación.
    """
    if data.price < 0:
        raise InputValidationError(f"Price must be non-negative, got {data.price}")
    if data.window_days < 0:
        raise InputValidationError(
            f"Window days must be non-negative, got {data.window_days}")
    if not 0 <= data.partial_refund_rate <= 1:
        raise InputValidationError(
            "Partial refund rate must be a fraction between 0 and 1")

    is_within_fee_window = data.days_until_appointment <= data.window_days
    will_charge_fee = is_within_fee_window and data.has_cleaner_assigned
    requires_payment_method = will_charge_fee and not data.has_payment_method

    if not data.has_cleaner_assigned:
        refund_amount = data.price
    elif is_within_fee_window:
        refund_amount = fraction_of(data.price, data.partial_refund_rate)
    else:
        refund_amount = data.price

    return CancellationDecision(
        is_within_fee_window=is_within_fee_window,
        has_cleaner_assigned=data.has_cleaner_assigned,
        will_charge_fee=will_charge_fee,
        refund_amount=refund_amount,
        requires_payment_method=requires_payment_method,
    )


def evaluate_cancellation_for_policy(
    session: Session,
    appointment_date: date,
    has_cleaner_assigned: bool,
    has_payment_method: bool,
    price: int,
    today: Optional[date] = None
) -> CancellationDecision:
    """Evalúa la cancelación con la política activa (o la de por defecto)."""
    policy = get_active_cancellation_policy(session)
    return evaluate_cancellation(CancellationInput(
        days_until_appointment=days_until_appointment(appointment_date, today),
        window_days=policy.window_days,
        has_cleaner_assigned=has_cleaner_assigned,
        has_payment_method=has_payment_method,
        price=price,
        partial_refund_rate=policy.partial_refund_rate,
    ))


def add_fee_to_bill(session: Session, user_id: UUID, amount: int) -> UserBill:
    """Suma la multa a la cuenta pendiente del usuario."""
    bill = session.exec(select(UserBill).where(UserBill.user_id == user_id)).first()
    if not bill:
        bill = UserBill(user_id=user_id)
    bill.cancellation_fee += amount
    bill.total_due += amount
    session.add(bill)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        bill = session.exec(select(UserBill).where(UserBill.user_id == user_id)).one()
        bill.cancellation_fee += amount
        bill.total_due += amount
        session.add(bill)
        session.commit()
    session.refresh(bill)
    return bill


def settle_cancellation_fee(
    session: Session,
    user_id: UUID,
    decision: CancellationDecision,
    fee_amount: int,
    processor: PaymentProcessor,
    description: str = "Cancellation fee"
) -> FeeSettlement:
    """
    Cobra la multa de cancelación.

    Se intenta primero el cobro con el procesador; si falla la multa se
    agrega a la cuenta del usuario. Siempre ocurre exactamente una de las dos.
    """
    if not decision.will_charge_fee or fee_amount <= 0:
        return FeeSettlement(outcome=FeeSettlementOutcome.NONE, user_id=user_id)
    if decision.requires_payment_method:
        return FeeSettlement(
            outcome=FeeSettlementOutcome.BLOCKED,
            fee_amount=fee_amount,
            failure_reason="A payment method is required to cancel",
            user_id=user_id,
        )

    try:
        result = processor.charge(user_id, fee_amount, description)
    except Exception as e:
        logger.exception("Cancellation fee charge raised for user %s", user_id)
        result = ChargeResult(success=False, failure_reason=str(e) or type(e).__name__)

    if result.success:
        return FeeSettlement(
            outcome=FeeSettlementOutcome.CHARGED,
            fee_amount=fee_amount,
            charge_id=result.charge_id,
            user_id=user_id,
        )

    logger.warning("Cancellation fee charge failed for user %s: %s, adding to bill",
                   user_id, result.failure_reason)
    add_fee_to_bill(session, user_id, fee_amount)
    return FeeSettlement(
        outcome=FeeSettlementOutcome.BILLED,
        fee_amount=fee_amount,
        failure_reason=result.failure_reason,
        user_id=user_id,
    )
