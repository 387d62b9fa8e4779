class KleanrError(Exception):
    """Error base del motor financiero. Cada subclase tiene un código estable."""
    code = "KLEANR_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class InputValidationError(KleanrError):
    code = "INPUT_VALIDATION"


class ConcurrencyConflict(KleanrError):
    code = "CONCURRENCY_CONFLICT"

    def __init__(self, message: str = "", current_status=None):
        super().__init__(message)
        self.current_status = current_status


class ExternalTransferFailure(KleanrError):
    code = "EXTERNAL_TRANSFER_FAILURE"


class ConfigurationMissing(KleanrError):
    code = "CONFIGURATION_MISSING"


class PayoutNotFound(KleanrError):
    code = "PAYOUT_NOT_FOUND"


class IllegalTransition(KleanrError):
    code = "ILLEGAL_TRANSITION"


class DuplicatePayout(KleanrError):
    code = "DUPLICATE_PAYOUT"


class PersistenceError(KleanrError):
    code = "PERSISTENCE_ERROR"
