from __future__ import annotations

from typing import Optional


class RaffleError(Exception):
    """Base class for every error raised by ledger_raffle."""


class ValidationError(RaffleError):
    """Malformed input to a pure function. Never retried."""


class PayloadError(ValidationError):
    pass


class PayloadLengthError(PayloadError):
    pass


class PayloadMagicError(PayloadError):
    """The bytes are not one of our payloads at all."""


class PayloadVersionError(PayloadError):
    pass


class NotFoundError(RaffleError):
    pass


class AdapterError(RaffleError):
    """Ledger query failed. Transient: the same query may succeed later."""


class RateLimitedError(AdapterError):
    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class PuzzleExhausted(RaffleError):
    def __init__(self, max_iterations: int) -> None:
        super().__init__(f"PoW not found within {max_iterations} iterations")
        self.max_iterations = max_iterations


class StateTransitionError(RaffleError):
    def __init__(self, sale_id: str, current: str, action: str) -> None:
        super().__init__(f"Sale {sale_id} is '{current}'; cannot {action}")
        self.sale_id = sale_id
        self.current = current
        self.action = action
