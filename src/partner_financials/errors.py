"""Error taxonomy for the partner financials engine.

Every error carries a machine-readable ``error_code`` and an HTTP
``status_code`` so that callers can tell "fix your input" apart from
"retry me" apart from "contact support":

  ValidationError           422  malformed month, bad terms, amount over available share
  NotFoundError             404  unknown report, request or partner invitation
  OwnershipMismatchError    403  report/request does not belong to the given partner or org
  InvalidTransitionError    409  withdrawal state machine violation (incl. double processing)
  UpstreamUnavailableError  503  ledger store or payment processor unreachable / timed out
  TransferDeclinedError     402  payment processor explicitly refused the transfer
"""

from typing import Any


class PartnerFinanceError(Exception):
    """Base error with API-facing context.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code for API responses.
        status_code: HTTP status code for this error kind.
        context: Additional identifiers describing the failure.
        recovery_hint: Suggested caller action.
    """

    default_code = "PARTNER_FINANCE_ERROR"
    default_status = 400
    default_hint: str | None = None

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
        error_code: str | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or self.default_code
        self.status_code = self.default_status
        self.context = context or {}
        self.recovery_hint = recovery_hint or self.default_hint
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class ValidationError(PartnerFinanceError):
    """Input rejected before any state was touched."""

    default_code = "VALIDATION_ERROR"
    default_status = 422
    default_hint = "Correct the request and submit it again"


class NotFoundError(PartnerFinanceError):
    """Referenced report, withdrawal request or partner invitation does not exist."""

    default_code = "NOT_FOUND"
    default_status = 404
    default_hint = "Verify the identifier and that the record exists"


class OwnershipMismatchError(PartnerFinanceError):
    """Record belongs to a different organization or partner invitation."""

    default_code = "OWNERSHIP_MISMATCH"
    default_status = 403
    default_hint = "Use a report and partner invitation from the same organization"


class InvalidTransitionError(PartnerFinanceError):
    """Withdrawal request is not in the source state required by the operation."""

    default_code = "INVALID_TRANSITION"
    default_status = 409
    default_hint = "Reload the withdrawal request to see its current status"

    def __init__(self, request_id: str, current_status: str | None, attempted: str) -> None:
        super().__init__(
            f"Cannot {attempted} withdrawal request {request_id} in status {current_status!r}",
            context={
                "withdrawal_request_id": request_id,
                "current_status": current_status,
                "attempted": attempted,
            },
        )


class UpstreamUnavailableError(PartnerFinanceError):
    """Ledger data source or payment processor could not be reached in time."""

    default_code = "UPSTREAM_UNAVAILABLE"
    default_status = 503
    default_hint = "Retry later; for payouts re-check the request status before retrying"


class TransferDeclinedError(PartnerFinanceError):
    """Payment processor explicitly refused the transfer."""

    default_code = "TRANSFER_DECLINED"
    default_status = 402
    default_hint = "Check the platform balance and the partner's payout account, then contact support"
