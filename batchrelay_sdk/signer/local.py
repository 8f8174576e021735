"""
Local private-key signer backed by eth-account.
"""
import logging
from typing import Any, Dict, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import to_checksum_address

from ..batch_contract import SignatureScheme
from ..models import Authorization

logger = logging.getLogger(__name__)


class LocalSigner:
    """
    Signer holding a raw secp256k1 private key in memory.

    Used both for the delegated account (authorizations and batch
    signatures) and for the sponsor (its own transactions).
    """

    def __init__(
        self,
        priv_key: str,
        scheme: Union[SignatureScheme, str] = SignatureScheme.PERSONAL_MESSAGE,
    ):
        """
        Initialize the signer

        Args:
            priv_key: Hex-encoded private key, with or without 0x prefix
            scheme: How batch digests are wrapped before signing; must be
                the scheme the batch contract recovers against

        Raises:
            ValueError: If the key or scheme is invalid
        """
        self._account = Account.from_key(priv_key)
        self.address = self._account.address
        self.scheme = SignatureScheme(scheme)

    def __repr__(self) -> str:
        return f"LocalSigner(address={self.address}, scheme={self.scheme.value})"

    def sign_authorization(self, target: str, chain_id: int, nonce: int) -> Authorization:
        """
        Sign an EIP-7702 authorization tuple.

        Args:
            target: Implementation to delegate to; the zero address revokes
            chain_id: Chain the authorization is valid on
            nonce: This account's current transaction count

        Returns:
            Signed authorization ready for a sponsor's ``authorizationList``
        """
        signed = self._account.sign_authorization({
            "chainId": chain_id,
            "address": to_checksum_address(target),
            "nonce": nonce,
        })
        logger.debug(f"Signed authorization for {self.address} -> {target} (nonce {nonce})")
        return Authorization(
            chain_id=signed.chain_id,
            address=signed.address,
            nonce=signed.nonce,
            y_parity=signed.y_parity,
            r=signed.r,
            s=signed.s,
            signer=self.address,
        )

    def sign_batch(self, digest: bytes) -> bytes:
        """
        Sign a batch digest under this signer's scheme.

        Raises:
            ValueError: If ``digest`` is not 32 bytes
        """
        digest = bytes(digest)
        if len(digest) != 32:
            raise ValueError(f"Digest must be 32 bytes, got {len(digest)}")
        if self.scheme == SignatureScheme.RAW_DIGEST:
            signed = self._account.unsafe_sign_hash(digest)
        else:
            signed = self._account.sign_message(encode_defunct(primitive=digest))
        return bytes(signed.signature)

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        """Sign transaction and return signed tx object"""
        return self._account.sign_transaction(transaction_dict)
