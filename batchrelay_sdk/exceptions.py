"""
Exceptions for the batchrelay SDK.

Every failure of the sponsored batch protocol maps onto exactly one of the
categories below so that an operator can decide whether a retry is safe.
"""
from typing import Any, Dict, Optional


class BatchRelayError(Exception):
    """
    Base exception for all SDK errors.

    Carries the context an operator needs to decide on a retry: the account
    being processed, the protocol step that failed, the batch nonce at the
    time of the attempt and the tracked transaction intent (if any).
    When a batch was confirmed before the failure (a failed revocation
    after execution), ``batch_result`` holds that completed batch.
    """

    def __init__(
        self,
        message: str,
        account: Optional[str] = None,
        step: Optional[str] = None,
        nonce: Optional[int] = None,
        intent: Optional[Any] = None,
    ):
        self.message = message
        self.account = account
        self.step = step
        self.nonce = nonce
        self.intent = intent
        self.batch_result: Optional[Any] = None
        super().__init__(message)

    @property
    def context(self) -> Dict[str, Any]:
        """Context fields that are known for this error"""
        ctx = {"account": self.account, "step": self.step, "nonce": self.nonce}
        if self.intent is not None:
            ctx["tx_hash"] = getattr(self.intent, "tx_hash", None)
            ctx["state"] = getattr(self.intent, "state", None)
        if self.batch_result is not None:
            ctx["batch_tx_hash"] = self.batch_result.batch_receipt.tx_hash
        return {k: v for k, v in ctx.items() if v is not None}

    def with_context(
        self,
        account: Optional[str] = None,
        step: Optional[str] = None,
        nonce: Optional[int] = None,
    ) -> "BatchRelayError":
        """
        Fill in context fields that are still unset.

        Fields already populated closer to the failure are never overwritten.

        Returns:
            The same exception instance, for use in ``raise err.with_context(...)``
        """
        if self.account is None:
            self.account = account
        if self.step is None:
            self.step = step
        if self.nonce is None:
            self.nonce = nonce
        return self

    def __str__(self) -> str:
        ctx = self.context
        if not ctx:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in ctx.items())
        return f"{self.message} ({details})"


class EncodingError(BatchRelayError, ValueError):
    """Raised when a batch or call cannot be encoded."""
    pass


class StateMismatchError(BatchRelayError):
    """
    Raised when the inspected delegation differs from what a step assumed.

    Recover by re-inspecting and re-planning, never by blind retry.
    """

    def __init__(self, message: str, expected: Optional[str] = None, actual: Optional[str] = None, **kwargs):
        self.expected = expected
        self.actual = actual
        super().__init__(message, **kwargs)


class SignatureRejectedError(BatchRelayError):
    """
    Raised when the signer recovered from a batch signature is not the account.

    The batch must be rebuilt against the current nonce and re-signed.
    """

    def __init__(self, message: str, recovered: Optional[str] = None, submitted: bool = False, **kwargs):
        self.recovered = recovered
        self.submitted = submitted
        super().__init__(message, **kwargs)


class CallRevertedError(BatchRelayError):
    """
    Raised when a batch (or one of its inner calls) reverted.

    The whole batch was rolled back and the nonce did not advance.
    """

    def __init__(self, message: str, reason: Optional[str] = None, submitted: bool = False, **kwargs):
        self.reason = reason
        self.submitted = submitted
        super().__init__(message, **kwargs)


class TransactionError(BatchRelayError):
    """
    Raised when submission or confirmation failed for transport reasons.

    The transaction may or may not have landed: re-query chain state before
    any retry.
    """
    pass


class ConfirmationTimeoutError(TransactionError):
    """Raised when a submitted transaction was not confirmed in time."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, **kwargs):
        self.tx_hash = tx_hash
        super().__init__(message, **kwargs)


class FundingError(BatchRelayError):
    """
    Raised when the sponsor cannot pay for gas or a call needs value the
    account does not hold.

    No state was mutated; top up and retry.
    """
    pass
