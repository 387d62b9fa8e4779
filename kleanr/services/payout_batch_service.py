import logging
from collections import OrderedDict
from datetime import date
from typing import List, Optional, Protocol
from uuid import UUID

from sqlmodel import Session

from kleanr.models.pending_payout import (
    BatchRunSummary,
    PayoutFilter,
    PayoutStatus,
    PendingPayout,
    TransferResult,
    TransitionMetadata,
)
from kleanr.services.payout_ledger_service import PayoutLedgerService
from kleanr.utils.errors import ExternalTransferFailure

logger = logging.getLogger(__name__)


class TransferGateway(Protocol):
    """Colaborador externo que mueve el dinero a la cuenta del trabajador."""

    def transfer(self, worker_id: UUID, amount: int, payout_ids: List[UUID]) -> TransferResult:
        ...


class PayoutBatchService:
    """
    Capa de servicio que procesa pagos pendientes contra el colaborador de
    transferencias. El libro de pagos solo registra intención y resultado.
    """

    def __init__(self, session: Session, gateway: TransferGateway):
        self.session = session
        self.gateway = gateway
        self.ledger = PayoutLedgerService(session)

    def process_due_payouts(self, on_date: Optional[date] = None) -> BatchRunSummary:
        """
        Procesa todos los pagos vencidos, una transferencia por trabajador.
        Los pagos que otro proceso ya tomó se omiten.
        """
        due = self.ledger.get_due_payouts(on_date)
        summary = BatchRunSummary()

        by_worker: "OrderedDict[UUID, List[PendingPayout]]" = OrderedDict()
        for payout in due:
            by_worker.setdefault(payout.worker_id, []).append(payout)

        for worker_id, payouts in by_worker.items():
            self._process_worker(worker_id, payouts, summary)

        logger.info("Payout batch for %s: %s workers, %s completed, %s failed, %s skipped",
                    on_date or date.today(), summary.workers, summary.completed,
                    summary.failed, summary.skipped)
        return summary

    def process_early_payout(self, worker_id: UUID) -> BatchRunSummary:
        """Paga ya todo lo pendiente de un trabajador, sin esperar la fecha programada."""
        payouts = self.ledger.query_pending_payouts(PayoutFilter(
            worker_id=worker_id, statuses=[PayoutStatus.PENDING]))
        summary = BatchRunSummary()
        if payouts:
            self._process_worker(worker_id, payouts, summary)
        return summary

    def process_termination_payout(self, worker_id: UUID) -> BatchRunSummary:
        """Pago final cuando termina la relación laboral."""
        logger.info("Processing termination payout for worker %s", worker_id)
        return self.process_early_payout(worker_id)

    def _claim(self, payouts: List[PendingPayout], summary: BatchRunSummary) -> List[PendingPayout]:
        claimed = []
        for payout in payouts:
            result = self.ledger.transition_payout(
                payout.id, PayoutStatus.PENDING, PayoutStatus.PROCESSING)
            if result.success:
                claimed.append(result.payout)
            else:
                summary.skipped += 1
        return claimed

    def _transfer(self, worker_id: UUID, amount: int, payout_ids: List[UUID]) -> TransferResult:
        try:
            result = self.gateway.transfer(worker_id, amount, payout_ids)
        except Exception as e:
            logger.exception("Transfer to worker %s raised", worker_id)
            failure = ExternalTransferFailure(str(e) or type(e).__name__)
            return TransferResult(success=False, failure_reason=failure.message)

        if result.success and not result.transfer_id:
            return TransferResult(
                success=False, failure_reason="Transfer reported success without a transfer reference")
        if not result.success and not result.failure_reason:
            return TransferResult(success=False, failure_reason="Transfer failed")
        return result

    def _process_worker(self, worker_id: UUID, payouts: List[PendingPayout], summary: BatchRunSummary):
        claimed = self._claim(payouts, summary)
        if not claimed:
            return
        summary.workers += 1
        summary.claimed += len(claimed)

        total = sum(p.amount for p in claimed)
        result = self._transfer(worker_id, total, [p.id for p in claimed])

        if result.success:
            metadata = TransitionMetadata(transfer_id=result.transfer_id)
            to_state = PayoutStatus.COMPLETED
        else:
            logger.warning("Transfer of %s cents to worker %s failed: %s",
                           total, worker_id, result.failure_reason)
            metadata = TransitionMetadata(failure_reason=result.failure_reason)
            to_state = PayoutStatus.FAILED
            summary.failures.append(f"{worker_id}: {result.failure_reason}")

        for payout in claimed:
            outcome = self.ledger.transition_payout(
                payout.id, PayoutStatus.PROCESSING, to_state, metadata)
            if not outcome.success:
                logger.error("Payout %s could not be recorded as %s: %s",
                             payout.id, to_state.value, outcome.message)
                continue
            if to_state == PayoutStatus.COMPLETED:
                summary.completed += 1
                summary.total_transferred += payout.amount
            else:
                summary.failed += 1
