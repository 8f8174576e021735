"""
batchrelay SDK - sponsored atomic batch execution for EIP-7702 accounts.
"""
from .version import __version__
from .client import BatchRelayClient
from .config import RelayConfig, NetworkConfig
from .controller import BatchController, ControllerState
from .coordinator import BatchCoordinator
from .delegation import DelegationDesignator, DelegationInspector, DesignatorKind
from .encoding import batch_digest, build_batch_request, encode_calls
from .events import EventEmitter, LoggingSubscriber, StepEvent
from .exceptions import (
    BatchRelayError, EncodingError, StateMismatchError, SignatureRejectedError,
    CallRevertedError, TransactionError, ConfirmationTimeoutError, FundingError
)
from .models import (
    Call, BatchRequest, Authorization, AuthorizationStep, GasParams,
    TransactionIntent, TxReceipt, BatchResult
)
from .planner import AuthorizationPlanner
from .relayer import RelayerExecutor
from .signer import Signer, LocalSigner

__all__ = [
    "BatchRelayClient",
    "RelayConfig",
    "NetworkConfig",
    "BatchController",
    "ControllerState",
    "BatchCoordinator",
    "DelegationDesignator",
    "DelegationInspector",
    "DesignatorKind",
    "batch_digest",
    "build_batch_request",
    "encode_calls",
    "EventEmitter",
    "LoggingSubscriber",
    "StepEvent",
    "BatchRelayError",
    "EncodingError",
    "StateMismatchError",
    "SignatureRejectedError",
    "CallRevertedError",
    "TransactionError",
    "ConfirmationTimeoutError",
    "FundingError",
    "Call",
    "BatchRequest",
    "Authorization",
    "AuthorizationStep",
    "GasParams",
    "TransactionIntent",
    "TxReceipt",
    "BatchResult",
    "AuthorizationPlanner",
    "RelayerExecutor",
    "Signer",
    "LocalSigner",
    "__version__",
]
