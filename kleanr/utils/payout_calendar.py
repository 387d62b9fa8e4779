from datetime import date, datetime, timedelta
from typing import Optional

from kleanr.core.config import settings

FRIDAY = 4  # date.weekday()


def is_payout_friday(day: date, anchor: Optional[date] = None) -> bool:
    """
    Indica si la fecha es un viernes de pago.
    Se paga cada dos viernes contados desde el viernes de referencia.
    """
    if isinstance(day, datetime):
        day = day.date()
    if day.weekday() != FRIDAY:
        return False
    anchor = anchor or settings.PAYOUT_BIWEEKLY_ANCHOR
    weeks_since_anchor = (day - anchor).days // 7
    return weeks_since_anchor % 2 == 0


def get_next_payout_date(from_date: Optional[date] = None, anchor: Optional[date] = None) -> date:
    """
    Calcula el próximo viernes de pago estrictamente posterior a `from_date`.
    """
    today = from_date or date.today()
    if isinstance(today, datetime):
        today = today.date()

    days_until_friday = (FRIDAY - today.weekday()) % 7
    next_friday = today + timedelta(days=days_until_friday or 7)

    while not is_payout_friday(next_friday, anchor):
        next_friday += timedelta(days=7)
    return next_friday


def get_expedited_payout_date(earned_at: datetime, payout_hours: int) -> date:
    """Fecha de pago para pagos prioritarios: `earned_at + payout_hours`."""
    return (earned_at + timedelta(hours=payout_hours)).date()
