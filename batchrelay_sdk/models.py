"""
Data models for the batchrelay SDK.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional, List, Tuple

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
UINT256_MAX = 2**256 - 1


def _checksum(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 20:
            raise ValueError(f"Address must be 20 bytes, got {len(value)}")
        return to_checksum_address(value)
    if not isinstance(value, str) or not is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return to_checksum_address(value)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        hex_str = value[2:] if value.startswith(("0x", "0X")) else value
        try:
            return bytes.fromhex(hex_str)
        except ValueError as e:
            raise ValueError(f"Invalid hex data: {str(e)}")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise ValueError(f"Expected bytes or hex string, got {type(value).__name__}")


class Call(BaseModel):
    """A single call inside a batch: ``{to, value, data}``"""
    model_config = ConfigDict(frozen=True)

    to: str
    value: int = Field(0, ge=0, le=UINT256_MAX)
    data: bytes = b""

    @field_validator("to", mode="before")
    @classmethod
    def _validate_to(cls, v: Any) -> str:
        return _checksum(v)

    @field_validator("data", mode="before")
    @classmethod
    def _validate_data(cls, v: Any) -> bytes:
        return _to_bytes(v)

    def as_tuple(self) -> Tuple[str, int, bytes]:
        """ABI tuple form ``(address,uint256,bytes)``"""
        return (self.to, self.value, self.data)


class BatchRequest(BaseModel):
    """An ordered batch of calls bound to the nonce it will be signed for"""
    model_config = ConfigDict(frozen=True)

    account: str
    nonce: int = Field(..., ge=0, le=UINT256_MAX)
    calls: Tuple[Call, ...] = Field(..., min_length=1)

    @field_validator("account", mode="before")
    @classmethod
    def _validate_account(cls, v: Any) -> str:
        return _checksum(v)

    @property
    def total_value(self) -> int:
        return sum(call.value for call in self.calls)


class Authorization(BaseModel):
    """
    A signed EIP-7702 authorization tuple.

    ``address`` is the delegation target; the zero address revokes the
    account's current delegation. ``signer`` is the account that signed it
    (the authority whose code will change).
    """
    model_config = ConfigDict(frozen=True)

    chain_id: int = Field(..., ge=0)
    address: str
    nonce: int = Field(..., ge=0)
    y_parity: int = Field(..., ge=0, le=1)
    r: int
    s: int
    signer: str

    @field_validator("address", "signer", mode="before")
    @classmethod
    def _validate_addresses(cls, v: Any) -> str:
        return _checksum(v)

    @property
    def is_revocation(self) -> bool:
        return self.address == ZERO_ADDRESS

    def to_tx_dict(self) -> Dict[str, Any]:
        """Entry format expected in a transaction's ``authorizationList``"""
        return {
            "chainId": self.chain_id,
            "address": self.address,
            "nonce": self.nonce,
            "yParity": self.y_parity,
            "r": self.r,
            "s": self.s,
        }


class GasParams(BaseModel):
    """Caller-supplied fee values for one transaction"""
    model_config = ConfigDict(frozen=True)

    gas: Optional[int] = Field(None, gt=0)
    max_fee_per_gas: int = Field(..., ge=0)
    max_priority_fee_per_gas: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _check_fee_order(self) -> "GasParams":
        if self.max_priority_fee_per_gas > self.max_fee_per_gas:
            raise ValueError("max_priority_fee_per_gas cannot exceed max_fee_per_gas")
        return self

    def to_tx_params(self) -> Dict[str, int]:
        params = {
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }
        if self.gas is not None:
            params["gas"] = self.gas
        return params


class AuthorizationAction(str, Enum):
    """Kind of delegation change a plan step performs"""
    REVOKE = "revoke"
    AUTHORIZE = "authorize"


class AuthorizationStep(BaseModel):
    """One step of a delegation plan"""
    model_config = ConfigDict(frozen=True)

    action: AuthorizationAction
    target: str = ZERO_ADDRESS

    @field_validator("target", mode="before")
    @classmethod
    def _validate_target(cls, v: Any) -> str:
        return _checksum(v)

    def __str__(self) -> str:
        if self.action == AuthorizationAction.REVOKE:
            return "revoke"
        return f"authorize({self.target})"


class TxKind(str, Enum):
    """What a sponsored transaction does"""
    AUTHORIZATION = "authorization"
    REVOCATION = "revocation"
    BATCH_EXECUTION = "batch_execution"


class TxState(str, Enum):
    """Lifecycle of a sponsored transaction"""
    BUILT = "built"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    TIMED_OUT = "timed_out"


# TIMED_OUT may still resolve once the chain is re-queried
_ALLOWED_TRANSITIONS = {
    TxState.BUILT: {TxState.SUBMITTED},
    TxState.SUBMITTED: {TxState.CONFIRMED, TxState.REVERTED, TxState.TIMED_OUT},
    TxState.TIMED_OUT: {TxState.CONFIRMED, TxState.REVERTED},
    TxState.CONFIRMED: set(),
    TxState.REVERTED: set(),
}


class TransactionIntent(BaseModel):
    """A transaction tracked by the relayer from construction to outcome"""
    kind: TxKind
    account: str
    state: TxState = TxState.BUILT
    tx_hash: Optional[str] = None
    nonce: Optional[int] = None
    sponsor_nonce: Optional[int] = None
    gas: Optional[GasParams] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def transition(self, new_state: TxState, error: Optional[str] = None) -> None:
        """
        Move the intent to ``new_state``.

        Raises:
            ValueError: If the transition is not allowed from the current state
        """
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise ValueError(f"Illegal intent transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        if error is not None:
            self.error = error

    @property
    def is_final(self) -> bool:
        return self.state in (TxState.CONFIRMED, TxState.REVERTED)


class TxReceipt(BaseModel):
    """Transaction receipt from the blockchain"""
    model_config = ConfigDict(populate_by_name=True)

    tx_hash: str = Field(..., alias="transactionHash")
    block_number: int = Field(..., alias="blockNumber")
    block_hash: str = Field(..., alias="blockHash")
    status: int
    gas_used: int = Field(..., alias="gasUsed")
    from_address: str = Field(..., alias="from")
    to_address: Optional[str] = Field(None, alias="to")
    logs: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class BatchResult(BaseModel):
    """Outcome of one full controller run for an account"""
    account: str
    batch_contract: str
    nonce: int
    steps: List[AuthorizationStep] = Field(default_factory=list)
    authorization_receipts: List[TxReceipt] = Field(default_factory=list)
    batch_receipt: TxReceipt
    revocation_receipt: Optional[TxReceipt] = None

    @property
    def gas_used(self) -> int:
        """Gas consumed by the batch execution transaction"""
        return self.batch_receipt.gas_used

    @property
    def total_gas_used(self) -> int:
        """Gas consumed by every sponsored transaction of the run"""
        total = self.batch_receipt.gas_used
        total += sum(r.gas_used for r in self.authorization_receipts)
        if self.revocation_receipt is not None:
            total += self.revocation_receipt.gas_used
        return total
