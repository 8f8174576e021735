"""
Signer interface for the batchrelay SDK.

A signer holds key material and produces signatures on demand. It never
sends anything to the network: the relayer owns submission.
"""
from typing import Any, Dict, Protocol, runtime_checkable

from ..models import Authorization


@runtime_checkable
class Signer(Protocol):
    """Protocol for signers used by delegated accounts and sponsors"""
    address: str

    def sign_authorization(self, target: str, chain_id: int, nonce: int) -> Authorization:
        """Sign an EIP-7702 authorization delegating to ``target`` (zero address revokes)"""
        ...

    def sign_batch(self, digest: bytes) -> bytes:
        """Sign a 32-byte batch digest and return the 65-byte signature"""
        ...

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        """Sign transaction and return signed tx object"""
        ...


from .local import LocalSigner  # noqa: E402

__all__ = ["Signer", "LocalSigner"]
