"""
Per-account orchestration of the sponsored batch protocol.
"""
import logging
import threading
from enum import Enum
from typing import Any, Callable, Optional, Sequence, TypeVar

import requests
from web3.exceptions import Web3Exception

from .batch_contract import verify_batch_signature
from .config import RelayConfig
from .delegation import DelegationInspector, DesignatorKind
from .encoding import CallLike, batch_digest, build_batch_request, to_calls
from .events import EventEmitter, StepEvent
from .exceptions import BatchRelayError, EncodingError, StateMismatchError, TransactionError
from .models import AuthorizationAction, AuthorizationStep, BatchResult, TxReceipt
from .planner import REVOKE, AuthorizationPlanner
from .relayer import RelayerExecutor
from .signer import Signer

T = TypeVar("T")


class ControllerState(str, Enum):
    """Where a controller is in the protocol"""
    IDLE = "idle"
    INSPECTING = "inspecting"
    PLANNING = "planning"
    AUTHORIZING = "authorizing"
    CONFIRMING = "confirming"
    SIGNING = "signing"
    EXECUTING = "executing"
    REVOKING = "revoking"


class BatchController:
    """
    Drives one delegated account through inspect, authorize, sign and execute.

    Every operation on the account runs under the controller's lock, so two
    batches for the same account never interleave their nonce reads. The
    controller never retries: on any failure it returns to ``idle`` and
    raises an error carrying the account, step and nonce involved.
    """

    def __init__(
        self,
        signer: Signer,
        relayer: RelayerExecutor,
        inspector: DelegationInspector,
        config: RelayConfig,
        emitter: Optional[EventEmitter] = None,
        logger: Optional[logging.Logger] = None,
        planner: Optional[AuthorizationPlanner] = None,
    ):
        """
        Initialize the controller

        Args:
            signer: Signer of the delegated account (its own key)
            relayer: Relayer that pays for and sends transactions
            inspector: Read-only chain view
            config: Relay configuration naming the batch contract
            emitter: Optional event emitter for step transitions
            logger: Optional logger instance to use for debug/info logging
            planner: Optional planner override
        """
        self.signer = signer
        self.account = signer.address
        self.relayer = relayer
        self.inspector = inspector
        self.config = config
        self.emitter = emitter or EventEmitter()
        self.logger = logger or logging.getLogger(__name__)
        self.planner = planner or AuthorizationPlanner(logger=self.logger)
        self.state = ControllerState.IDLE
        self._lock = threading.Lock()
        self._step: Optional[str] = None
        self._nonce: Optional[int] = None

    def execute(
        self,
        calls: Sequence[CallLike],
        value: int = 0,
        revoke_after: bool = False,
    ) -> BatchResult:
        """
        Execute ``calls`` atomically from the account, sponsored by the relayer.

        Delegates the account to the configured batch contract first when
        needed (revoking a foreign delegation before authorizing), then signs
        the batch at the contract's current nonce and submits it.

        Args:
            calls: Ordered calls; ``Call`` objects or ``{to, value, data}`` dicts
            value: Native value the sponsor attaches to the execution
            revoke_after: Revoke the delegation once the batch is confirmed

        Returns:
            BatchResult with every receipt of the run

        Raises:
            EncodingError: If ``calls`` is empty or malformed
            StateMismatchError: If delegation state differs from what a step produced
            SignatureRejectedError: If the batch signature is rejected
            CallRevertedError: If the batch reverted
            FundingError: If the sponsor cannot pay
            TransactionError: On transport failures or confirmation timeouts
        """
        call_list = to_calls(calls)
        if not call_list:
            raise EncodingError("Batch must contain at least one call", account=self.account)

        with self._lock:
            return self._run(lambda: self._execute(call_list, value, revoke_after))

    def revoke(self) -> Optional[TxReceipt]:
        """
        Restore the account to a plain account.

        Returns:
            Receipt of the revocation, or None if the account was not delegated
        """
        with self._lock:
            return self._run(self._revoke)

    def _run(self, operation: Callable[[], T]) -> T:
        self._step = None
        self._nonce = None
        try:
            return operation()
        except BatchRelayError as e:
            e.with_context(account=self.account, step=self._step, nonce=self._nonce)
            self.logger.error(f"Batch run for {self.account} failed at {self.state.value}: {e}")
            self._emit(self.state, detail={"error": type(e).__name__, "message": e.message})
            raise
        finally:
            self._enter(ControllerState.IDLE)

    def _execute(self, calls, value: int, revoke_after: bool) -> BatchResult:
        target = self.config.batch_contract

        self._enter(ControllerState.INSPECTING)
        classification = self._query(lambda: self.inspector.classify(self.account, target))

        self._enter(ControllerState.PLANNING, detail={"designator": str(classification.designator)})
        steps = self.planner.plan(classification.designator, target)
        if not steps:
            self.logger.info(f"Account {self.account} already delegated to {target}")

        authorization_receipts = [self._apply_step(step) for step in steps]

        # Signing must happen against the live nonce of a confirmed delegation
        self._step = "sign"
        self._enter(ControllerState.SIGNING)
        designator = self._query(lambda: self.inspector.read_designator(self.account))
        if not designator.points_to(target):
            raise StateMismatchError(
                f"Account is not delegated to {target} before signing (found {designator})",
                expected=target,
                actual=str(designator),
            )
        nonce = self._query(lambda: self.inspector.batch_nonce(self.account))
        self._nonce = nonce
        request = build_batch_request(self.account, nonce, calls)
        signature = self.signer.sign_batch(batch_digest(nonce, request.calls))
        verify_batch_signature(self.account, nonce, request.calls, signature, self.config.signature_scheme)

        self._step = "execute"
        self._enter(ControllerState.EXECUTING, detail={"calls": len(request.calls), "value": value})
        batch_receipt = self.relayer.submit_batch(request, signature, value=value)
        self._emit(
            ControllerState.CONFIRMING,
            tx_hash=batch_receipt.tx_hash,
            detail={"status": "confirmed", "gas_used": batch_receipt.gas_used},
        )
        self.logger.info(f"Batch at nonce {nonce} for {self.account} confirmed in {batch_receipt.tx_hash}")

        result = BatchResult(
            account=self.account,
            batch_contract=target,
            nonce=nonce,
            steps=steps,
            authorization_receipts=authorization_receipts,
            batch_receipt=batch_receipt,
        )
        if revoke_after:
            # The batch landed, so the contract nonce has moved past it
            self._nonce = nonce + 1
            try:
                result.revocation_receipt = self._revoke()
            except BatchRelayError as e:
                e.batch_result = result
                raise
        return result

    def _revoke(self) -> Optional[TxReceipt]:
        self._enter(ControllerState.INSPECTING)
        designator = self._query(lambda: self.inspector.read_designator(self.account))
        steps = self.planner.plan_revocation(designator)
        if not steps:
            self.logger.info(f"Account {self.account} is not delegated; nothing to revoke")
            return None
        receipts = [self._apply_step(step, ControllerState.REVOKING) for step in steps]
        return receipts[-1]

    def _apply_step(
        self,
        step: AuthorizationStep,
        state: ControllerState = ControllerState.AUTHORIZING,
    ) -> TxReceipt:
        """Sign, submit and confirm one authorization step, then check its effect"""
        self._step = str(step)
        if step.action == AuthorizationAction.REVOKE and state == ControllerState.AUTHORIZING:
            # Revocation inside an authorization plan still shows as revoking
            state = ControllerState.REVOKING
        self._enter(state)

        auth_nonce = self._query(lambda: self.inspector.transaction_count(self.account))
        authorization = self.signer.sign_authorization(step.target, self.relayer.chain_id, auth_nonce)

        self._enter(ControllerState.CONFIRMING, detail={"authorization_nonce": auth_nonce})
        receipt = self.relayer.submit_authorization(authorization)
        self._emit(ControllerState.CONFIRMING, tx_hash=receipt.tx_hash, detail={"status": "confirmed"})

        designator = self._query(lambda: self.inspector.read_designator(self.account))
        if step == REVOKE:
            applied = designator.kind == DesignatorKind.NONE
            expected = "none"
        else:
            applied = designator.points_to(step.target)
            expected = step.target
        if not applied:
            raise StateMismatchError(
                f"{step} confirmed but account is {designator}",
                expected=expected,
                actual=str(designator),
            )
        self.logger.info(f"Step {step} applied to {self.account}")
        return receipt

    def _query(self, read: Callable[[], T]) -> T:
        try:
            return read()
        except (Web3Exception, requests.RequestException) as e:
            raise TransactionError(f"Chain query failed: {str(e)}")

    def _enter(self, state: ControllerState, **kwargs: Any) -> None:
        self.state = state
        self._emit(state, **kwargs)

    def _emit(self, state: ControllerState, tx_hash: Optional[str] = None, detail: Optional[dict] = None) -> None:
        self.emitter.emit(StepEvent(
            account=self.account,
            state=state.value,
            step=self._step,
            nonce=self._nonce,
            tx_hash=tx_hash,
            detail=detail or {},
        ))
