"""
Exception Hierarchy Module

Domain errors raised by the loan engine. None of these represent defects;
infrastructure errors from the storage layer are never wrapped.
"""


class LoanEngineError(Exception):
    """Base exception for all loan engine errors"""


class InvalidInputError(LoanEngineError, ValueError):
    """Raised when arguments are malformed or out of range"""


class NotFoundError(LoanEngineError):
    """Raised when a referenced entity does not exist"""


class LoanNotFoundError(NotFoundError):
    """Raised when a loan does not exist"""


class InstallmentNotFoundError(NotFoundError):
    """Raised when an installment does not exist"""


class ConsumerNotFoundError(NotFoundError):
    """Raised when the eligibility checker does not know the consumer"""


class InvalidLoanOperationError(LoanEngineError):
    """Raised when a lifecycle transition or eligibility precondition fails"""


class InvalidRepaymentError(LoanEngineError):
    """Raised when a payment cannot be applied to an installment"""


class ConcurrencyConflictError(LoanEngineError):
    """Raised when a versioned write loses against a concurrent update"""
    
    def __init__(self, entity_type: str, entity_id: str, expected_version: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


class OverpaymentWarning(UserWarning):
    """Issued when a payment exceeds the amount due on an installment"""
