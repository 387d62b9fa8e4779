import logging
from collections import OrderedDict
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Set
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from kleanr.core.config import settings
from kleanr.models.job_assignment import JobAssignment, JobAssignmentStatus
from kleanr.models.pending_payout import (
    OwnerPayrollSummary,
    PayoutCreationResult,
    PayoutFilter,
    PayoutPriority,
    PayoutStatus,
    PendingEarningsSummary,
    PendingPayout,
    PendingTotals,
    TransitionMetadata,
    TransitionResult,
    WorkerPayrollGroup,
)
from kleanr.services.pay_split_service import compute_assignment_pay
from kleanr.services.tier_service import TierService, calculate_payout_bonus, is_preferred_at_location
from kleanr.utils.errors import (
    ConcurrencyConflict,
    DuplicatePayout,
    IllegalTransition,
    InputValidationError,
    KleanrError,
    PayoutNotFound,
    PersistenceError,
)
from kleanr.utils.payout_calendar import get_expedited_payout_date, get_next_payout_date

logger = logging.getLogger(__name__)


class PayoutStateMachine:
    """
    Máquina de estados del pago pendiente.
    completed, failed y cancelled son terminales; un pago en processing
    solo puede terminar en completed o failed.
    """
    TRANSITIONS: Dict[PayoutStatus, Set[PayoutStatus]] = {
        PayoutStatus.PENDING: {PayoutStatus.PROCESSING, PayoutStatus.CANCELLED},
        PayoutStatus.PROCESSING: {PayoutStatus.COMPLETED, PayoutStatus.FAILED},
    }

    TERMINAL_STATES = {PayoutStatus.COMPLETED,
                       PayoutStatus.FAILED, PayoutStatus.CANCELLED}

    @classmethod
    def can_transition(cls, current_state: PayoutStatus, new_state: PayoutStatus) -> bool:
        return new_state in cls.TRANSITIONS.get(current_state, set())

    @classmethod
    def get_allowed_transitions(cls, current_state: PayoutStatus) -> Set[PayoutStatus]:
        return cls.TRANSITIONS.get(current_state, set())

    @classmethod
    def is_terminal(cls, state: PayoutStatus) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def build_update(cls, from_state: PayoutStatus, to_state: PayoutStatus,
                     metadata: TransitionMetadata) -> dict:
        """
        Valida la transición y arma los campos a escribir junto con el estado.
        """
        if not cls.can_transition(from_state, to_state):
            raise IllegalTransition(
                f"Cannot move payout from {from_state.value} to {to_state.value}")

        values = {"status": to_state}
        if to_state == PayoutStatus.COMPLETED:
            if not metadata.transfer_id:
                raise InputValidationError(
                    "A transfer reference is required to complete a payout")
            values["transfer_id"] = metadata.transfer_id
            values["paid_at"] = datetime.now(timezone.utc)
        elif to_state == PayoutStatus.FAILED:
            if not metadata.failure_reason:
                raise InputValidationError(
                    "A failure reason is required to fail a payout")
            values["failure_reason"] = metadata.failure_reason
        elif to_state == PayoutStatus.CANCELLED:
            if not metadata.reason:
                raise InputValidationError(
                    "A reason is required to cancel a payout")
            values["failure_reason"] = metadata.reason
        return values


class PayoutLedgerService:
    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Creación
    # ------------------------------------------------------------------

    def create_pending_payout(
        self,
        assignment: JobAssignment,
        amount: Optional[int] = None,
        earned_at: Optional[datetime] = None
    ) -> PayoutCreationResult:
        """
        Crea el único pago pendiente de una asignación completada.

        Toma una foto del nivel actual del trabajador (bono, prioridad y horas
        esperadas). Si otro proceso ya creó el pago de la asignación no se
        crea nada y se devuelve el existente.

        Args:
            assignment: Asignación completada
            amount: Pago base en centavos; si no se envía se calcula con el
                reparto del trabajo
            earned_at: Momento en que se ganó el pago (por defecto, ahora)

        Returns:
            PayoutCreationResult: `created` indica si se insertó una fila nueva
        """
        try:
            return self._create_pending_payout(assignment, amount, earned_at)
        except KleanrError as e:
            logger.warning("Payout for assignment %s not created: %s",
                           assignment.id, e.message)
            return PayoutCreationResult(created=False, error_code=e.code, message=e.message)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception("Error creating payout for assignment %s", assignment.id)
            return PayoutCreationResult(created=False, error_code=PersistenceError.code, message=str(e))

    def _create_pending_payout(self, assignment, amount, earned_at) -> PayoutCreationResult:
        if assignment.status != JobAssignmentStatus.COMPLETED:
            raise InputValidationError(
                f"Assignment {assignment.id} is not completed")
        if assignment.worker_id is None:
            raise InputValidationError(
                f"Assignment {assignment.id} has no worker")
        if assignment.is_self_assignment:
            raise InputValidationError(
                f"Assignment {assignment.id} is a self-assignment and earns no payout")
        if amount is not None and amount < 0:
            raise InputValidationError(f"Amount must be non-negative, got {amount}")

        existing = self.get_payout_by_assignment(assignment.id)
        if existing:
            return self._duplicate_result(existing)

        split = compute_assignment_pay(assignment)
        base_amount = split.pay_amount if amount is None else amount

        perks = TierService(self.session).get_current_perks(assignment.worker_id)
        is_preferred = is_preferred_at_location(
            self.session, assignment.worker_id, assignment.location_id)
        bonus = calculate_payout_bonus(
            assignment.job_price, perks, is_preferred, assignment.worker_count)

        earned_at = earned_at or datetime.now(timezone.utc)
        priority = PayoutPriority.HIGH if perks.faster_payouts else PayoutPriority.NORMAL
        expected_hours = perks.payout_hours or settings.DEFAULT_PAYOUT_HOURS
        if priority == PayoutPriority.HIGH:
            scheduled = get_expedited_payout_date(earned_at, expected_hours)
        else:
            scheduled = get_next_payout_date(earned_at.date())

        payout = PendingPayout(
            worker_id=assignment.worker_id,
            owner_id=assignment.owner_id,
            assignment_id=assignment.id,
            amount=base_amount + bonus.bonus_amount,
            pay_type=split.pay_type,
            hours_worked=split.adjusted_duration_hours,
            payout_priority=priority,
            expected_payout_hours=expected_hours,
            preferred_bonus_applied=bonus.bonus_applied,
            preferred_bonus_percent=bonus.bonus_percent,
            preferred_bonus_amount=bonus.bonus_amount,
            cleaner_tier_at_payout=perks.tier_level,
            scheduled_payout_date=scheduled,
            earned_at=earned_at,
        )
        self.session.add(payout)
        try:
            self.session.commit()
        except IntegrityError:
            # Restricción única sobre assignment_id: otro reporte ganó la carrera
            self.session.rollback()
            existing = self.get_payout_by_assignment(assignment.id)
            if not existing:
                raise
            return self._duplicate_result(existing)

        self.session.refresh(payout)
        logger.info("Created pending payout %s for worker %s: %s cents (%s, tier %s)",
                    payout.id, payout.worker_id, payout.amount,
                    payout.payout_priority.value, payout.cleaner_tier_at_payout)
        return PayoutCreationResult(created=True, payout=payout)

    def _duplicate_result(self, existing: PendingPayout) -> PayoutCreationResult:
        logger.info("Payout for assignment %s already exists (%s)",
                    existing.assignment_id, existing.id)
        return PayoutCreationResult(
            created=False,
            payout=existing,
            error_code=DuplicatePayout.code,
            message=f"Assignment {existing.assignment_id} already has a payout",
        )

    # ------------------------------------------------------------------
    # Transiciones
    # ------------------------------------------------------------------

    def transition_payout(
        self,
        payout_id: UUID,
        from_state: PayoutStatus,
        to_state: PayoutStatus,
        metadata: Optional[TransitionMetadata] = None
    ) -> TransitionResult:
        """
        Único punto de entrada para cambiar el estado de un pago.

        La escritura es compare-and-swap: solo se aplica si el estado actual
        sigue siendo `from_state`. Si otro proceso se adelantó se devuelve un
        conflicto y no se reaplica ningún efecto.
        """
        try:
            from_state = PayoutStatus(from_state)
            to_state = PayoutStatus(to_state)
        except ValueError:
            return TransitionResult(
                success=False,
                error_code=InputValidationError.code,
                message=f"Unknown payout state in {from_state!r} -> {to_state!r}",
            )

        try:
            payout = self._transition(
                payout_id, from_state, to_state, metadata or TransitionMetadata())
        except ConcurrencyConflict as e:
            logger.warning("Payout %s transition %s -> %s conflicted: %s",
                           payout_id, from_state.value, to_state.value, e.message)
            return TransitionResult(success=False, error_code=e.code, message=e.message,
                                    current_status=e.current_status)
        except KleanrError as e:
            return TransitionResult(success=False, error_code=e.code, message=e.message)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception("Error updating payout %s", payout_id)
            return TransitionResult(success=False, error_code=PersistenceError.code, message=str(e))

        logger.info("Payout %s moved from %s to %s",
                    payout_id, from_state.value, to_state.value)
        return TransitionResult(success=True, payout=payout, current_status=payout.status)

    def _transition(self, payout_id, from_state, to_state, metadata) -> PendingPayout:
        values = PayoutStateMachine.build_update(from_state, to_state, metadata)

        updated = self.session.query(PendingPayout).filter(
            PendingPayout.id == payout_id,
            PendingPayout.status == from_state
        ).update(values, synchronize_session=False)

        if updated == 0:
            self.session.rollback()
            current = self.session.get(PendingPayout, payout_id)
            if not current:
                raise PayoutNotFound(f"Payout {payout_id} not found")
            raise ConcurrencyConflict(
                f"Payout {payout_id} is {current.status.value}, expected {from_state.value}",
                current_status=current.status,
            )

        self.session.commit()
        payout = self.session.get(PendingPayout, payout_id)
        self.session.refresh(payout)
        return payout

    def cancel_pending_payout_for_assignment(self, assignment_id: UUID, reason: str) -> TransitionResult:
        """Cancela el pago de una asignación anulada antes de cualquier transferencia."""
        payout = self.get_payout_by_assignment(assignment_id)
        if not payout:
            return TransitionResult(
                success=False,
                error_code=PayoutNotFound.code,
                message=f"No payout for assignment {assignment_id}",
            )
        return self.transition_payout(
            payout.id, PayoutStatus.PENDING, PayoutStatus.CANCELLED,
            TransitionMetadata(reason=reason))

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------

    def get_payout(self, payout_id: UUID) -> Optional[PendingPayout]:
        return self.session.get(PendingPayout, payout_id)

    def get_payout_by_assignment(self, assignment_id: UUID) -> Optional[PendingPayout]:
        return self.session.exec(
            select(PendingPayout).where(PendingPayout.assignment_id == assignment_id)
        ).first()

    def query_pending_payouts(self, payout_filter: Optional[PayoutFilter] = None) -> List[PendingPayout]:
        """Lista pagos por trabajador, dueño, estados y fecha programada."""
        payout_filter = payout_filter or PayoutFilter()
        query = select(PendingPayout)
        if payout_filter.worker_id:
            query = query.where(PendingPayout.worker_id == payout_filter.worker_id)
        if payout_filter.owner_id:
            query = query.where(PendingPayout.owner_id == payout_filter.owner_id)
        if payout_filter.statuses:
            query = query.where(PendingPayout.status.in_(payout_filter.statuses))
        if payout_filter.due_on_or_before:
            query = query.where(
                PendingPayout.scheduled_payout_date <= payout_filter.due_on_or_before)
        query = query.order_by(PendingPayout.scheduled_payout_date, PendingPayout.earned_at)
        if payout_filter.offset:
            query = query.offset(payout_filter.offset)
        if payout_filter.limit is not None:
            query = query.limit(payout_filter.limit)
        return list(self.session.exec(query).all())

    def get_pending_totals(self, worker_id: Optional[UUID] = None, owner_id: Optional[UUID] = None) -> PendingTotals:
        """Suma y cantidad de pagos pendientes por trabajador y/o dueño."""
        query = select(
            func.coalesce(func.sum(PendingPayout.amount), 0),
            func.count(PendingPayout.id)
        ).where(PendingPayout.status == PayoutStatus.PENDING)
        if worker_id:
            query = query.where(PendingPayout.worker_id == worker_id)
        if owner_id:
            query = query.where(PendingPayout.owner_id == owner_id)
        total, count = self.session.exec(query).one()
        return PendingTotals(total_amount=int(total or 0), payout_count=count or 0)

    def get_due_payouts(self, on_date: Optional[date] = None) -> List[PendingPayout]:
        """Pagos pendientes programados para `on_date` o antes."""
        return self.query_pending_payouts(PayoutFilter(
            statuses=[PayoutStatus.PENDING],
            due_on_or_before=on_date or date.today(),
        ))

    def get_pending_earnings_for_worker(self, worker_id: UUID, today: Optional[date] = None) -> PendingEarningsSummary:
        payouts = self.query_pending_payouts(PayoutFilter(
            worker_id=worker_id, statuses=[PayoutStatus.PENDING]))
        return PendingEarningsSummary(
            worker_id=worker_id,
            total_pending=sum(p.amount for p in payouts),
            job_count=len(payouts),
            next_payout_date=get_next_payout_date(today),
            payouts=payouts,
        )

    def get_pending_payroll_for_owner(self, owner_id: UUID, today: Optional[date] = None) -> OwnerPayrollSummary:
        """Nómina pendiente del dueño agrupada por trabajador."""
        payouts = self.query_pending_payouts(PayoutFilter(
            owner_id=owner_id, statuses=[PayoutStatus.PENDING]))

        groups: "OrderedDict[UUID, WorkerPayrollGroup]" = OrderedDict()
        for payout in payouts:
            group = groups.get(payout.worker_id)
            if not group:
                group = WorkerPayrollGroup(
                    worker_id=payout.worker_id, total_amount=0, payout_count=0)
                groups[payout.worker_id] = group
            group.total_amount += payout.amount
            group.payout_count += 1
            group.payouts.append(payout)

        return OwnerPayrollSummary(
            owner_id=owner_id,
            total_amount=sum(p.amount for p in payouts),
            payout_count=len(payouts),
            next_payout_date=get_next_payout_date(today),
            by_worker=list(groups.values()),
        )
