"""
Verification discipline of the batch contract.

The contract running at a delegated account accepts ``execute(calls,
signature)`` from anyone, recomputes the batch digest over its current
nonce, recovers the signer and requires it to be the account itself. Calls
then run in order; any revert rolls the whole batch back and leaves the
nonce untouched. Only a fully successful batch advances the nonce, by one.

This module reproduces those rules off-chain: signature recovery mirrors
the contract's ``ECDSA.recover(toEthSignedMessageHash(digest), signature)``
and ``BatchAccountModel`` mirrors its state machine.
"""
import logging
from enum import Enum
from typing import Any, List, Protocol, Sequence

from eth_account.messages import defunct_hash_message
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError as KeyValidationError
from eth_utils import to_checksum_address

from .encoding import CallLike, batch_digest, to_calls
from .exceptions import CallRevertedError, SignatureRejectedError
from .models import Call

logger = logging.getLogger(__name__)

INVALID_SIGNATURE_REASON = "Invalid signature"
CALL_REVERTED_REASON = "Call reverted"

# secp256k1 group order; signatures with s above half of it are rejected
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2

BATCH_CONTRACT_ABI = [
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "address", "name": "to", "type": "address"},
                    {"internalType": "uint256", "name": "value", "type": "uint256"},
                    {"internalType": "bytes", "name": "data", "type": "bytes"}
                ],
                "internalType": "struct BatchCallAndSponsor.Call[]",
                "name": "calls",
                "type": "tuple[]"
            },
            {"internalType": "bytes", "name": "signature", "type": "bytes"}
        ],
        "name": "execute",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "nonce",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    }
]


class SignatureScheme(str, Enum):
    """
    How the batch digest is wrapped before signing.

    PERSONAL_MESSAGE is the EIP-191 ``personal_sign`` wrapping the contract
    recovers against. RAW_DIGEST signs the bare digest and only matches a
    contract that recovers without the prefix.
    """
    PERSONAL_MESSAGE = "personal_message"
    RAW_DIGEST = "raw_digest"


def signed_hash(digest: bytes, scheme: SignatureScheme = SignatureScheme.PERSONAL_MESSAGE) -> bytes:
    """
    Hash that the signature actually covers under ``scheme``.

    Raises:
        ValueError: If ``digest`` is not 32 bytes
    """
    if len(digest) != 32:
        raise ValueError(f"Digest must be 32 bytes, got {len(digest)}")
    if scheme == SignatureScheme.RAW_DIGEST:
        return digest
    return bytes(defunct_hash_message(primitive=digest))


def recover_digest_signer(
    digest: bytes,
    signature: bytes,
    scheme: SignatureScheme = SignatureScheme.PERSONAL_MESSAGE,
) -> str:
    """
    Recover the address that signed ``digest``.

    Applies the same checks as OpenZeppelin's ``ECDSA.recover``: 65-byte
    signature, ``v`` of 27 or 28, low ``s``.

    Raises:
        SignatureRejectedError: If the signature is malformed or unrecoverable
    """
    signature = bytes(signature)
    if len(signature) != 65:
        raise SignatureRejectedError(f"{INVALID_SIGNATURE_REASON}: expected 65 bytes, got {len(signature)}")

    r = int.from_bytes(signature[0:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    v = signature[64]
    if v not in (27, 28):
        raise SignatureRejectedError(f"{INVALID_SIGNATURE_REASON}: bad recovery id {v}")
    if s > SECP256K1_HALF_N:
        raise SignatureRejectedError(f"{INVALID_SIGNATURE_REASON}: malleable s value")

    try:
        sig = keys.Signature(vrs=(v - 27, r, s))
        public_key = sig.recover_public_key_from_msg_hash(signed_hash(digest, scheme))
    except (BadSignature, KeyValidationError) as e:
        raise SignatureRejectedError(f"{INVALID_SIGNATURE_REASON}: {str(e)}")
    return public_key.to_checksum_address()


def recover_batch_signer(
    nonce: int,
    calls: Sequence[CallLike],
    signature: bytes,
    scheme: SignatureScheme = SignatureScheme.PERSONAL_MESSAGE,
) -> str:
    """Recover the signer of ``calls`` at ``nonce``"""
    return recover_digest_signer(batch_digest(nonce, calls), signature, scheme)


def verify_batch_signature(
    account: str,
    nonce: int,
    calls: Sequence[CallLike],
    signature: bytes,
    scheme: SignatureScheme = SignatureScheme.PERSONAL_MESSAGE,
) -> None:
    """
    Check a batch signature the way the contract at ``account`` would.

    Raises:
        SignatureRejectedError: If the recovered signer is not ``account``
    """
    account = to_checksum_address(account)
    try:
        recovered = recover_batch_signer(nonce, calls, signature, scheme)
    except SignatureRejectedError as e:
        raise e.with_context(account=account, nonce=nonce)
    if recovered != account:
        raise SignatureRejectedError(
            INVALID_SIGNATURE_REASON,
            recovered=recovered,
            account=account,
            nonce=nonce,
        )


class CallHandler(Protocol):
    """
    Executes the inner calls of a batch for ``BatchAccountModel``.

    ``receive`` credits native value sent along with the batch.
    ``dispatch`` raises ``CallRevertedError`` when a call fails;
    ``snapshot``/``restore`` let the model roll back a partial batch.
    """

    def receive(self, account: str, value: int) -> None:
        ...

    def dispatch(self, sender: str, call: Call) -> Any:
        ...

    def snapshot(self) -> Any:
        ...

    def restore(self, state: Any) -> None:
        ...


class BatchAccountModel:
    """
    In-process reference of the batch contract at one delegated account.

    Used to check orchestration logic against the exact nonce and signature
    rules without a node.
    """

    def __init__(
        self,
        address: str,
        handler: CallHandler,
        scheme: SignatureScheme = SignatureScheme.PERSONAL_MESSAGE,
    ):
        self.address = to_checksum_address(address)
        self.handler = handler
        self.scheme = scheme
        self.nonce = 0
        self.executed: List[int] = []

    def execute(self, calls: Sequence[CallLike], signature: bytes, value: int = 0) -> int:
        """
        Verify and run a batch atomically.

        Args:
            calls: Ordered calls of the batch
            signature: Signature over the batch digest at the current nonce
            value: Native value sent with the execution, credited to the account
                before the first call and rolled back with the batch

        Returns:
            The new nonce

        Raises:
            SignatureRejectedError: If the signature does not recover to the account
            CallRevertedError: If any call reverts; nothing is applied
        """
        call_list = to_calls(calls)
        current = self.nonce
        verify_batch_signature(self.address, current, call_list, signature, self.scheme)

        state = self.handler.snapshot()
        if value:
            self.handler.receive(self.address, value)
        for index, call in enumerate(call_list):
            try:
                self.handler.dispatch(self.address, call)
            except CallRevertedError as e:
                self.handler.restore(state)
                logger.debug(f"Call {index} of batch at nonce {current} reverted: {e.reason or e.message}")
                raise CallRevertedError(
                    CALL_REVERTED_REASON,
                    reason=e.reason or e.message,
                    submitted=True,
                    account=self.address,
                    nonce=current,
                )

        self.nonce = current + 1
        self.executed.append(current)
        return self.nonce
