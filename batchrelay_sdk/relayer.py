"""
RelayerExecutor - submission of sponsored transactions.

The relayer is the only component that sends transactions. It pays for gas
from the sponsor's account, waits for each transaction to be confirmed, and
reports failures by category without ever retrying on its own: once a
transaction was submitted, nonce and delegation state may have changed
meaning, so a retry is the caller's decision after re-reading the chain.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import requests
from eth_utils import to_checksum_address
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception

from ._rate_limited_log import rate_limited_log
from .batch_contract import BATCH_CONTRACT_ABI, INVALID_SIGNATURE_REASON
from .config import RelayConfig
from .exceptions import (
    BatchRelayError, CallRevertedError, ConfirmationTimeoutError, FundingError,
    SignatureRejectedError, TransactionError
)
from .models import (
    Authorization, BatchRequest, GasParams, TransactionIntent, TxKind, TxReceipt, TxState
)
from .signer import Signer

SET_CODE_TX_TYPE = 4
REVERT_PREFIX = "execution reverted"


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    value = str(value)
    return value if value.startswith("0x") else "0x" + value


def _jsonable(value: Any) -> Any:
    """Convert web3 receipt values (HexBytes, AttributeDict) to plain types"""
    if isinstance(value, (bytes, bytearray)):
        return _to_hex(value)
    if isinstance(value, dict) or hasattr(value, "items"):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def revert_reason(error: Exception) -> str:
    """Extract the human-readable revert reason from a web3 error"""
    message = getattr(error, "message", None) or str(error)
    if message.lower().startswith(REVERT_PREFIX):
        message = message[len(REVERT_PREFIX):].lstrip(": ").strip()
    return message or "execution reverted"


def classify_failure(
    reason: str,
    submitted: bool,
    account: Optional[str] = None,
    nonce: Optional[int] = None,
    step: Optional[str] = None,
    intent: Optional[TransactionIntent] = None,
) -> BatchRelayError:
    """
    Map a failure reason onto the error taxonomy.

    Args:
        reason: Revert reason or node error message
        submitted: Whether a transaction was actually sent

    Returns:
        The exception to raise
    """
    text = reason.lower()
    context = dict(account=account, nonce=nonce, step=step, intent=intent)
    if "insufficient funds" in text:
        return FundingError(f"Insufficient funds: {reason}", **context)
    if INVALID_SIGNATURE_REASON.lower() in text:
        return SignatureRejectedError(INVALID_SIGNATURE_REASON, submitted=submitted, **context)
    prefix = "Batch reverted on-chain" if submitted else "Batch simulation reverted"
    return CallRevertedError(f"{prefix}: {reason}", reason=reason, submitted=submitted, **context)


class RelayerExecutor:
    """
    Sends authorization and batch transactions on behalf of delegated accounts.

    One executor can serve many accounts concurrently: reading the sponsor's
    nonce and sending are serialized by a lock so sponsor nonces never
    collide. Confirmation waiting happens outside the lock.
    """

    def __init__(
        self,
        w3: Web3,
        sponsor: Signer,
        config: RelayConfig,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the relayer

        Args:
            w3: Web3 instance connected to the target chain
            sponsor: Signer of the account that pays for gas
            config: Relay configuration (gas values, timeouts)
            logger: Optional logger instance to use for debug/info logging
        """
        self.w3 = w3
        self.sponsor = sponsor
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self._chain_id = config.chain_id
        self._send_lock = threading.Lock()

    @property
    def address(self) -> str:
        """Sponsor address paying for gas"""
        return self.sponsor.address

    @property
    def chain_id(self) -> int:
        """Configured chain id, or the node's if none was configured"""
        if self._chain_id is None:
            self._chain_id = self.w3.eth.chain_id
        return self._chain_id

    def submit_authorization(
        self,
        authorization: Authorization,
        gas: Optional[GasParams] = None,
    ) -> TxReceipt:
        """
        Send an EIP-7702 authorization (or revocation) and wait for it.

        The transaction goes from the sponsor to the signer's own address
        with zero value, empty data and exactly one authorization entry.

        Args:
            authorization: Authorization signed by the delegated account
            gas: Fee values; defaults to the configured authorization gas

        Returns:
            Receipt of the confirmed transaction

        Raises:
            ValueError: If the authorization was signed for another chain
            FundingError: If the sponsor cannot pay for gas
            TransactionError: If submission failed for transport reasons
            ConfirmationTimeoutError: If no receipt arrived in time
            CallRevertedError: If the transaction reverted
        """
        if authorization.chain_id not in (0, self.chain_id):
            raise ValueError(
                f"Authorization is for chain {authorization.chain_id}, relayer is on {self.chain_id}"
            )
        gas = gas or self.config.authorization_gas_params()
        kind = TxKind.REVOCATION if authorization.is_revocation else TxKind.AUTHORIZATION
        intent = TransactionIntent(kind=kind, account=authorization.signer, gas=gas)
        step = "revoke" if authorization.is_revocation else f"authorize({authorization.address})"

        def build(sponsor_nonce: int) -> Dict[str, Any]:
            tx = {
                "type": SET_CODE_TX_TYPE,
                "chainId": self.chain_id,
                "nonce": sponsor_nonce,
                "to": authorization.signer,
                "value": 0,
                "data": b"",
                "authorizationList": [authorization.to_tx_dict()],
                **gas.to_tx_params(),
            }
            if "gas" not in tx:
                tx["gas"] = self._estimate_gas(tx, intent, step)
            return tx

        self.logger.info(f"Submitting {kind.value} for {authorization.signer} -> {authorization.address}")
        _, tx_hash = self._send(build, intent, step)
        receipt = self._await_receipt(tx_hash, intent, step)

        if receipt.get("status") != 1:
            intent.transition(TxState.REVERTED, error="authorization transaction reverted")
            raise CallRevertedError(
                f"{kind.value.capitalize()} transaction reverted",
                reason="authorization transaction reverted",
                submitted=True,
                account=authorization.signer,
                step=step,
                intent=intent,
            )
        intent.transition(TxState.CONFIRMED)
        self.logger.info(f"{kind.value.capitalize()} confirmed for {authorization.signer}: {intent.tx_hash}")
        return self._convert_receipt(receipt)

    def submit_batch(
        self,
        request: BatchRequest,
        signature: bytes,
        value: int = 0,
        gas: Optional[GasParams] = None,
    ) -> TxReceipt:
        """
        Simulate, send and confirm a signed batch.

        Args:
            request: The batch, bound to the nonce it was signed for
            signature: The account's signature over the batch digest
            value: Native value the sponsor attaches to the call
            gas: Fee values; defaults to the configured batch gas

        Returns:
            Receipt of the confirmed execution, including gas used

        Raises:
            SignatureRejectedError: If the contract rejects the signature
            CallRevertedError: If the batch reverts (simulated or on-chain)
            FundingError: If the sponsor cannot pay for gas or value
            TransactionError: If submission failed for transport reasons
            ConfirmationTimeoutError: If no receipt arrived in time
        """
        gas = gas or self.config.batch_gas_params()
        account = request.account
        step = "execute"
        intent = TransactionIntent(
            kind=TxKind.BATCH_EXECUTION, account=account, nonce=request.nonce, gas=gas
        )
        contract = self.w3.eth.contract(address=account, abi=BATCH_CONTRACT_ABI)
        fn = contract.functions.execute([call.as_tuple() for call in request.calls], bytes(signature))
        context = dict(account=account, nonce=request.nonce, step=step, intent=intent)

        # 1. Simulate so a doomed batch never costs gas
        try:
            fn.call({"from": self.sponsor.address, "value": value})
        except ContractLogicError as e:
            reason = revert_reason(e)
            self.logger.warning(f"Batch simulation for {account} at nonce {request.nonce} reverted: {reason}")
            raise classify_failure(reason, submitted=False, **context)
        except (Web3Exception, ValueError) as e:
            if "insufficient funds" in str(e).lower():
                raise FundingError(f"Insufficient funds: {str(e)}", **context)
            raise TransactionError(f"Batch simulation failed: {str(e)}", **context)
        except requests.RequestException as e:
            raise TransactionError(f"Batch simulation failed: {str(e)}", **context)

        # 2. Build and send
        def build(sponsor_nonce: int) -> Dict[str, Any]:
            params = {
                "from": self.sponsor.address,
                "nonce": sponsor_nonce,
                "value": value,
                "chainId": self.chain_id,
                **gas.to_tx_params(),
            }
            try:
                return fn.build_transaction(params)
            except ContractLogicError as e:
                # State moved between simulation and gas estimation
                raise classify_failure(revert_reason(e), submitted=False, **context)
            except (Web3Exception, ValueError) as e:
                if "insufficient funds" in str(e).lower():
                    raise FundingError(f"Insufficient funds: {str(e)}", **context)
                raise TransactionError(f"Failed to build batch transaction: {str(e)}", **context)
            except requests.RequestException as e:
                raise TransactionError(f"Failed to build batch transaction: {str(e)}", **context)

        self.logger.info(f"Submitting batch of {len(request.calls)} calls for {account} at nonce {request.nonce}")
        tx, tx_hash = self._send(build, intent, step)

        # 3. Wait for the outcome
        receipt = self._await_receipt(tx_hash, intent, step, nonce=request.nonce)
        if receipt.get("status") != 1:
            reason = self._replay_revert_reason(tx, receipt) or "reverted on-chain"
            intent.transition(TxState.REVERTED, error=reason)
            self.logger.error(f"Batch for {account} at nonce {request.nonce} reverted on-chain: {reason}")
            raise classify_failure(reason, submitted=True, **context)

        intent.transition(TxState.CONFIRMED)
        converted = self._convert_receipt(receipt)
        self.logger.info(f"Batch confirmed for {account}: {converted.tx_hash} (gas used {converted.gas_used})")
        return converted

    def resolve_intent(self, intent: TransactionIntent) -> TransactionIntent:
        """
        Re-query the chain for a submitted or timed-out transaction.

        Moves the intent to CONFIRMED or REVERTED when a receipt exists and
        leaves it unchanged otherwise. Call this before deciding whether a
        timed-out step needs to be redone.

        Raises:
            ValueError: If the intent was never submitted
            TransactionError: If the node could not be queried
        """
        if intent.tx_hash is None:
            raise ValueError("Intent has no transaction hash; it was never submitted")
        if intent.is_final:
            return intent
        try:
            receipt = self.w3.eth.get_transaction_receipt(intent.tx_hash)
        except TransactionNotFound:
            receipt = None
        except (Web3Exception, requests.RequestException) as e:
            raise TransactionError(f"Failed to query receipt: {str(e)}", account=intent.account, intent=intent)

        if receipt is None:
            self.logger.info(f"Transaction {intent.tx_hash} still has no receipt")
            return intent
        if receipt.get("status") == 1:
            intent.transition(TxState.CONFIRMED)
        else:
            intent.transition(TxState.REVERTED, error="reverted on-chain")
        return intent

    def _send(
        self,
        build: Callable[[int], Dict[str, Any]],
        intent: TransactionIntent,
        step: str,
    ):
        """Build, sign and broadcast under the sponsor lock"""
        context = dict(account=intent.account, nonce=intent.nonce, step=step, intent=intent)
        with self._send_lock:
            try:
                sponsor_nonce = self.w3.eth.get_transaction_count(self.sponsor.address, "pending")
            except (Web3Exception, requests.RequestException) as e:
                raise TransactionError(f"Failed to read sponsor nonce: {str(e)}", **context)

            tx = build(sponsor_nonce)

            try:
                signed_tx = self.sponsor.sign_transaction(tx)
            except Exception as e:
                self.logger.error(f"Transaction signing failed: {e}")
                raise TransactionError(f"Failed to sign transaction: {str(e)}", **context)

            try:
                tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
            except (Web3Exception, ValueError) as e:
                self.logger.error(f"Failed to send transaction: {e}")
                if "insufficient funds" in str(e).lower():
                    raise FundingError(f"Sponsor {self.sponsor.address} cannot pay: {str(e)}", **context)
                raise TransactionError(f"Failed to send transaction: {str(e)}", **context)
            except requests.RequestException as e:
                # The node may have accepted it before the connection dropped
                self.logger.error(f"Transport error while sending transaction: {e}")
                raise TransactionError(f"Transport error while sending transaction: {str(e)}", **context)

        intent.sponsor_nonce = sponsor_nonce
        intent.tx_hash = _to_hex(tx_hash)
        intent.transition(TxState.SUBMITTED)
        self.logger.info(f"Transaction sent: {intent.tx_hash}")
        return tx, tx_hash

    def _estimate_gas(self, tx: Dict[str, Any], intent: TransactionIntent, step: str) -> int:
        estimate_tx = {k: v for k, v in tx.items() if k not in ("nonce", "maxFeePerGas", "maxPriorityFeePerGas")}
        estimate_tx["from"] = self.sponsor.address
        try:
            return self.w3.eth.estimate_gas(estimate_tx)
        except ContractLogicError as e:
            raise classify_failure(revert_reason(e), submitted=False, account=intent.account, step=step, intent=intent)
        except (Web3Exception, ValueError, requests.RequestException) as e:
            raise TransactionError(f"Gas estimation failed: {str(e)}", account=intent.account, step=step, intent=intent)

    def _await_receipt(
        self,
        tx_hash: Any,
        intent: TransactionIntent,
        step: str,
        nonce: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Wait for a receipt until the configured timeout.

        A transport error while waiting is logged and the wait resumes with
        the remaining time; the transaction is already out and only its
        receipt matters.
        """
        hex_hash = _to_hex(tx_hash)
        deadline = time.monotonic() + self.config.confirmation_timeout

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                return self.w3.eth.wait_for_transaction_receipt(
                    tx_hash,
                    timeout=remaining,
                    poll_latency=self.config.poll_interval,
                )
            except TimeExhausted:
                break
            except (Web3Exception, requests.RequestException) as e:
                rate_limited_log(
                    f"Error waiting for receipt of {hex_hash}: {e}",
                    level="warning",
                    interval=30,
                    logger_instance=self.logger,
                    key=f"wait-error:{hex_hash}",
                )
                time.sleep(self.config.poll_interval)

        message = f"No receipt for {hex_hash} after {self.config.confirmation_timeout}s"
        intent.transition(TxState.TIMED_OUT, error=message)
        self.logger.error(f"{message}; re-inspect the account before retrying")
        raise ConfirmationTimeoutError(
            message, tx_hash=hex_hash, account=intent.account, step=step, nonce=nonce, intent=intent
        )

    def _replay_revert_reason(self, tx: Dict[str, Any], receipt: Dict[str, Any]) -> Optional[str]:
        """Replay a reverted transaction with eth_call to recover its reason"""
        call_tx = {k: tx[k] for k in ("to", "value", "data") if k in tx}
        call_tx["from"] = self.sponsor.address
        block = receipt.get("blockNumber")
        block_identifier = block - 1 if isinstance(block, int) and block > 0 else "latest"
        try:
            self.w3.eth.call(call_tx, block_identifier)
        except ContractLogicError as e:
            return revert_reason(e)
        except (Web3Exception, ValueError, requests.RequestException) as e:
            self.logger.debug(f"Could not replay reverted transaction: {e}")
        return None

    def _convert_receipt(self, web3_receipt: Dict[str, Any]) -> TxReceipt:
        """
        Convert Web3 receipt to our TxReceipt model

        Args:
            web3_receipt: The Web3 transaction receipt

        Returns:
            Our TxReceipt model
        """
        receipt_dict = _jsonable(dict(web3_receipt))
        if receipt_dict.get("to") is not None:
            receipt_dict["to"] = to_checksum_address(receipt_dict["to"])
        return TxReceipt.model_validate(receipt_dict)
