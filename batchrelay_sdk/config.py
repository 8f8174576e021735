"""
Configuration for the batchrelay SDK.

``RelayConfig`` is the explicit configuration handed to relayers and
controllers at construction time. ``NetworkConfig`` provides packaged
defaults for known networks.
"""
import json
import logging
import os
import urllib.parse
from importlib import resources
from typing import Any, Dict, Optional

from eth_utils import is_hex_address, to_checksum_address
from pydantic import BaseModel, Field, field_validator

from .batch_contract import SignatureScheme
from .models import GasParams, ZERO_ADDRESS

logger = logging.getLogger(__name__)

# 0.11 gwei, the BSC sponsor fee
DEFAULT_GAS_PRICE_WEI = 110_000_000
DEFAULT_AUTHORIZATION_GAS = 100_000
ENV_PREFIX = "BATCHRELAY_"


def validate_rpc_url(url: str, name: str = "rpc_url") -> str:
    """
    Require https for remote endpoints.

    Raises:
        ValueError: If the URL is not https and not a localhost address
    """
    parsed = urllib.parse.urlparse(url)
    # Check if it's a localhost or 127.0.0.1 address (with or without port)
    host = parsed.hostname or ''
    is_local = host in ('localhost', '127.0.0.1')
    if parsed.scheme != 'https' and not is_local:
        raise ValueError(f"{name} must use https:// for security (got: {parsed.scheme}://)")
    return url


class RelayConfig(BaseModel):
    """Settings shared by the relayer and the per-account controllers"""

    rpc_url: str
    batch_contract: str
    chain_id: Optional[int] = Field(None, gt=0)
    authorization_gas: int = Field(DEFAULT_AUTHORIZATION_GAS, gt=0)
    batch_gas: Optional[int] = Field(None, gt=0)
    max_fee_per_gas: int = Field(DEFAULT_GAS_PRICE_WEI, ge=0)
    max_priority_fee_per_gas: int = Field(DEFAULT_GAS_PRICE_WEI, ge=0)
    confirmation_timeout: float = Field(120.0, gt=0)
    poll_interval: float = Field(1.0, gt=0)
    request_timeout: int = Field(30, gt=0)
    signature_scheme: SignatureScheme = SignatureScheme.PERSONAL_MESSAGE

    @field_validator("rpc_url")
    @classmethod
    def _validate_rpc_url(cls, v: str) -> str:
        return validate_rpc_url(v)

    @field_validator("batch_contract", mode="before")
    @classmethod
    def _validate_batch_contract(cls, v: Any) -> str:
        if not isinstance(v, str) or not is_hex_address(v):
            raise ValueError(f"batch_contract must be an address, got {v!r}")
        address = to_checksum_address(v)
        if address == ZERO_ADDRESS:
            raise ValueError("batch_contract cannot be the zero address")
        return address

    def authorization_gas_params(self) -> GasParams:
        """Fee values for authorization and revocation transactions"""
        return GasParams(
            gas=self.authorization_gas,
            max_fee_per_gas=self.max_fee_per_gas,
            max_priority_fee_per_gas=self.max_priority_fee_per_gas,
        )

    def batch_gas_params(self) -> GasParams:
        """Fee values for batch execution; ``gas=None`` lets the node estimate"""
        return GasParams(
            gas=self.batch_gas,
            max_fee_per_gas=self.max_fee_per_gas,
            max_priority_fee_per_gas=self.max_priority_fee_per_gas,
        )

    @classmethod
    def from_network(cls, network: str, **overrides: Any) -> "RelayConfig":
        """
        Build a config from a packaged network entry.

        Args:
            network: Network name in ``networks.json``
            **overrides: Field values that take precedence over the network's

        Raises:
            ValueError: If the network is unknown or lacks a batch contract
        """
        net = NetworkConfig.get_network(network)
        values: Dict[str, Any] = {
            "rpc_url": NetworkConfig.get_rpc_url(network),
            "chain_id": net.get("chainId"),
        }
        if net.get("batchContract"):
            values["batch_contract"] = net["batchContract"]
        if net.get("maxFeePerGas") is not None:
            values["max_fee_per_gas"] = net["maxFeePerGas"]
        if net.get("maxPriorityFeePerGas") is not None:
            values["max_priority_fee_per_gas"] = net["maxPriorityFeePerGas"]
        values.update({k: v for k, v in overrides.items() if v is not None})
        if "batch_contract" not in values:
            raise ValueError(f"Network '{network}' has no batch contract; pass batch_contract explicitly")
        return cls(**values)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, environ: Optional[Dict[str, str]] = None) -> "RelayConfig":
        """
        Build a config from environment variables.

        ``{prefix}NETWORK`` selects packaged defaults; every field can be
        set or overridden with ``{prefix}<FIELD_NAME>`` (upper case).

        Raises:
            ValueError: If required values are missing or invalid
        """
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = env.get(f"{prefix}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw

        network = env.get(f"{prefix}NETWORK")
        if network:
            return cls.from_network(network, **values)
        return cls(**values)


class NetworkConfig:
    """Access to the packaged ``networks.json``"""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """Load network definitions, cached after the first read"""
        if cls._networks_cache is not None:
            return cls._networks_cache
        text = resources.files("batchrelay_sdk").joinpath("networks.json").read_text(encoding="utf-8")
        cls._networks_cache = json.loads(text)
        return cls._networks_cache

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        """
        Get a network definition by name.

        Raises:
            ValueError: If the network is unknown
        """
        networks = cls.load_networks()
        if network not in networks:
            available = ", ".join(sorted(networks))
            raise ValueError(f"Unknown network '{network}'. Available networks: {available}")
        return networks[network]

    @classmethod
    def get_rpc_url(cls, network: str) -> str:
        """RPC URL for ``network``; ``BATCHRELAY_RPC_URL`` takes precedence"""
        override = os.environ.get(f"{ENV_PREFIX}RPC_URL")
        if override:
            logger.debug(f"Using RPC URL override from environment for {network}")
            return override
        return cls.get_network(network)["rpc"]

    @classmethod
    def get_batch_contract(cls, network: str) -> Optional[str]:
        address = cls.get_network(network).get("batchContract")
        return to_checksum_address(address) if address else None

    @classmethod
    def get_explorer_tx_url(cls, network: str, tx_hash: str) -> Optional[str]:
        """Block explorer link for a transaction, if the network has one"""
        explorer = cls.get_network(network).get("explorer")
        if not explorer:
            return None
        if not tx_hash.startswith("0x"):
            tx_hash = "0x" + tx_hash
        return f"{explorer}/tx/{tx_hash}"
