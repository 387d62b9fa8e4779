import logging
from typing import List, Optional, Sequence

from kleanr.core.config import settings
from kleanr.models.job_assignment import JobAssignment, PayType
from kleanr.models.pay_terms import (
    FlatRatePay,
    HourlyPay,
    PayTerms,
    PercentagePay,
    SelfAssignmentPay,
    SplitWorker,
    WorkerSplit,
)
from kleanr.utils.errors import InputValidationError
from kleanr.utils.rounding import (
    fraction_of,
    percent_of,
    round_to_nearest_minor_unit,
    round_up_to_half_hour,
    to_decimal,
)

logger = logging.getLogger(__name__)

FLAT_RATE_ALIASES = {PayType.FLAT_RATE.value, PayType.PER_JOB.value}


def adjusted_duration(base_duration_hours: float, worker_count: int) -> float:
    """
    Duración que le corresponde a cada trabajador de un trabajo compartido.
    Con un solo trabajador es la duración base; con varios se divide y se
    redondea hacia arriba a la media hora.
    """
    if base_duration_hours is None or base_duration_hours < 0:
        raise InputValidationError(
            f"Duration must be non-negative, got {base_duration_hours}")
    if worker_count is None or worker_count < 0:
        raise InputValidationError(
            f"Worker count must be non-negative, got {worker_count}")
    if worker_count <= 1:
        return float(base_duration_hours)
    return round_up_to_half_hour(to_decimal(base_duration_hours) / worker_count)


def pay_for_terms(pay: PayTerms, adjusted_hours: float, job_price: int) -> tuple[int, str]:
    """Calcula (monto en centavos, tipo de pago) para un trabajador."""
    if isinstance(pay, HourlyPay):
        return round_to_nearest_minor_unit(to_decimal(pay.rate) * to_decimal(adjusted_hours)), "hourly"
    if isinstance(pay, FlatRatePay):
        return pay.amount, "flat_rate"
    if isinstance(pay, PercentagePay):
        # Sobre el precio total: el porcentaje ya es la parte del trabajador
        return percent_of(job_price, pay.rate), "percentage"
    if isinstance(pay, SelfAssignmentPay):
        return 0, "none"
    raise InputValidationError(f"Unsupported pay terms: {pay!r}")


def compute_split(
    base_duration_hours: float,
    worker_count: int,
    workers: Sequence[SplitWorker],
    job_price: int = 0
) -> List[WorkerSplit]:
    """
    Reparte la duración y el pago de un trabajo entre sus trabajadores.

    Todos los trabajadores de la misma cita ven la misma duración ajustada.
    Función pura, sin efectos secundarios.

    Args:
        base_duration_hours: Duración total estimada del trabajo
        worker_count: Número de trabajadores asignados a la cita
        workers: Condiciones de pago de cada trabajador
        job_price: Precio total de la cita en centavos (para pagos por porcentaje)

    Returns:
        List[WorkerSplit]: Una entrada por trabajador, en el mismo orden

    Raises:
        InputValidationError: Duración, número de trabajadores o precio negativos
    """
    if job_price is None or job_price < 0:
        raise InputValidationError(
            f"Job price must be non-negative, got {job_price}")
    hours = adjusted_duration(base_duration_hours, worker_count)

    splits = []
    for worker in workers:
        amount, pay_type = pay_for_terms(worker.pay, hours, job_price)
        splits.append(WorkerSplit(
            worker_id=worker.worker_id,
            adjusted_duration_hours=hours,
            pay_amount=amount,
            pay_type=pay_type,
        ))
    return splits


def pay_terms_from_assignment(assignment: JobAssignment) -> PayTerms:
    """
    Convierte una asignación guardada en sus condiciones de pago.

    - `per_job` es un alias de `flat_rate`.
    - Sin tipo de pago o sin trabajador asignado se usa tarifa fija con
      `rate_value` (o 0).
    - Cualquier otro tipo desconocido se rechaza.
    """
    if assignment.is_self_assignment:
        return SelfAssignmentPay()

    rate_value = assignment.rate_value or 0
    if assignment.worker_id is None or not assignment.pay_type:
        logger.warning(
            "Assignment %s has no %s, using flat rate of %s",
            assignment.id,
            "worker" if assignment.worker_id is None else "pay type",
            rate_value,
        )
        return FlatRatePay(amount=round_to_nearest_minor_unit(rate_value))

    pay_type = assignment.pay_type.strip().lower()
    if pay_type == PayType.HOURLY.value:
        return HourlyPay(rate=round_to_nearest_minor_unit(rate_value))
    if pay_type in FLAT_RATE_ALIASES:
        return FlatRatePay(amount=round_to_nearest_minor_unit(rate_value))
    if pay_type == PayType.PERCENTAGE.value:
        if not 0 <= rate_value <= 100:
            raise InputValidationError(
                f"Percentage rate must be between 0 and 100, got {rate_value}")
        return PercentagePay(rate=rate_value)
    raise InputValidationError(
        f"Unknown pay type '{assignment.pay_type}' on assignment {assignment.id}")


def compute_assignment_pay(assignment: JobAssignment) -> WorkerSplit:
    """Pago de una asignación usando la duración compartida de su cita."""
    terms = pay_terms_from_assignment(assignment)
    split = compute_split(
        assignment.base_duration_hours,
        assignment.worker_count,
        [SplitWorker(worker_id=assignment.worker_id, pay=terms)],
        assignment.job_price,
    )
    return split[0]


def platform_fee_for_job(job_price: int, worker_count: int = 1, fee_rate: Optional[float] = None) -> int:
    """Comisión de la plataforma en centavos (tasa como fracción 0..1)."""
    if fee_rate is None:
        fee_rate = settings.MULTI_CLEANER_PLATFORM_FEE_RATE if worker_count > 1 else settings.PLATFORM_FEE_RATE
    return fraction_of(job_price, fee_rate)
