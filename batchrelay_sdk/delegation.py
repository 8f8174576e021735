"""
Inspection of an account's EIP-7702 delegation designator.

A delegated account carries the code ``0xef0100 || target`` (23 bytes). An
empty code marks a plain account. Anything else is reported as unknown.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from eth_utils import to_canonical_address, to_checksum_address
from web3 import Web3

from .batch_contract import BATCH_CONTRACT_ABI
from .models import ZERO_ADDRESS

logger = logging.getLogger(__name__)

DELEGATION_PREFIX = bytes.fromhex("ef0100")
DESIGNATOR_LENGTH = len(DELEGATION_PREFIX) + 20


class DesignatorKind(str, Enum):
    """Classification of an account's code"""
    NONE = "none"
    DELEGATED = "delegated"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DelegationDesignator:
    """
    Tagged value describing an account's delegation.

    Attributes:
        kind: NONE (plain account), DELEGATED or UNKNOWN
        target: Checksum address of the implementation, for DELEGATED only
        raw: The account's code as read from the chain
    """
    kind: DesignatorKind
    target: Optional[str] = None
    raw: bytes = b""

    @classmethod
    def none(cls) -> "DelegationDesignator":
        return cls(DesignatorKind.NONE)

    @classmethod
    def delegated(cls, target: str) -> "DelegationDesignator":
        return cls(DesignatorKind.DELEGATED, to_checksum_address(target), designator_for(target))

    def points_to(self, target: str) -> bool:
        """True if this designator delegates to ``target``"""
        if self.kind != DesignatorKind.DELEGATED or self.target is None:
            return False
        return to_canonical_address(self.target) == to_canonical_address(target)

    def __str__(self) -> str:
        if self.kind == DesignatorKind.DELEGATED:
            return f"Delegated({self.target})"
        if self.kind == DesignatorKind.UNKNOWN:
            return f"Unknown(0x{self.raw.hex()})"
        return "None"


@dataclass(frozen=True)
class Classification:
    """An account's designator relative to a target implementation"""
    account: str
    target: str
    designator: DelegationDesignator

    @property
    def matches_target(self) -> bool:
        return self.designator.points_to(self.target)


def designator_for(target: str) -> bytes:
    """
    Code an account carries once delegated to ``target``.

    Raises:
        ValueError: If ``target`` is not a valid address
    """
    return DELEGATION_PREFIX + to_canonical_address(target)


def parse_designator(code: Any) -> DelegationDesignator:
    """
    Classify raw account code.

    Args:
        code: Account code as bytes (``HexBytes`` included) or a hex string

    Returns:
        The parsed designator
    """
    if code is None:
        return DelegationDesignator.none()
    if isinstance(code, str):
        hex_str = code[2:] if code.lower().startswith("0x") else code
        code = bytes.fromhex(hex_str)
    raw = bytes(code)

    if not raw:
        return DelegationDesignator.none()
    if len(raw) == DESIGNATOR_LENGTH and raw.startswith(DELEGATION_PREFIX):
        target = to_checksum_address(raw[len(DELEGATION_PREFIX):])
        return DelegationDesignator(DesignatorKind.DELEGATED, target, raw)
    return DelegationDesignator(DesignatorKind.UNKNOWN, None, raw)


class DelegationInspector:
    """
    Read-only view of an account's delegation and nonces.

    Every method is a pure query against the node; nothing is cached, so a
    caller always acts on the chain's current state.
    """

    def __init__(self, w3: Web3, logger: Optional[logging.Logger] = None):
        self.w3 = w3
        self.logger = logger or logging.getLogger(__name__)

    def read_designator(self, account: str) -> DelegationDesignator:
        """Read and parse the code currently stored at ``account``"""
        account = to_checksum_address(account)
        code = self.w3.eth.get_code(account)
        designator = parse_designator(code)
        self.logger.debug(f"Account {account} designator: {designator}")
        return designator

    def classify(self, account: str, target: str) -> Classification:
        """
        Classify ``account``'s delegation relative to ``target``.

        Raises:
            ValueError: If ``target`` is the zero address
        """
        target = to_checksum_address(target)
        if target == ZERO_ADDRESS:
            raise ValueError("Target implementation cannot be the zero address")
        account = to_checksum_address(account)
        return Classification(account, target, self.read_designator(account))

    def transaction_count(self, account: str) -> int:
        """
        Protocol nonce of ``account``.

        EIP-7702 authorization tuples signed by the account must carry this
        value when a different party (the sponsor) sends the transaction.
        """
        return self.w3.eth.get_transaction_count(to_checksum_address(account))

    def batch_nonce(self, account: str) -> int:
        """Current nonce of the batch contract running at ``account``"""
        contract = self.w3.eth.contract(address=to_checksum_address(account), abi=BATCH_CONTRACT_ABI)
        return contract.functions.nonce().call()
