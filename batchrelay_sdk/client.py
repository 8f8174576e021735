"""
BatchRelayClient - Main client for sponsored EIP-7702 batch execution.
"""
import logging
import threading
from typing import Dict, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from web3 import Web3

from .config import NetworkConfig, RelayConfig
from .controller import BatchController
from .coordinator import BatchCoordinator
from .delegation import DelegationDesignator, DelegationInspector
from .encoding import CallLike
from .events import EventEmitter
from .models import BatchResult, TxReceipt
from .relayer import RelayerExecutor
from .signer import LocalSigner, Signer


class BatchRelayClient:
    """
    Client for sponsored batch execution.

    This client handles:
    1. Delegating accounts to the batch contract (EIP-7702)
    2. Signing batches with each account's key
    3. Submitting and paying for every transaction from one sponsor

    To use this client, you'll need:
    - An RPC endpoint for a chain with EIP-7702 enabled
    - The address of the deployed batch contract
    - Either the sponsor's private key or a custom sponsor signer
    """

    def __init__(
        self,
        config: RelayConfig,
        sponsor_priv_key: Optional[str] = None,
        sponsor_signer: Optional[Signer] = None,
        retry_count: int = 3,
        logger: Optional[logging.Logger] = None,
        w3: Optional[Web3] = None,
    ):
        """
        Initialize the BatchRelayClient

        Args:
            config: Relay configuration (RPC URL, batch contract, gas)
            sponsor_priv_key: Sponsor private key (optional if sponsor_signer provided)
            sponsor_signer: Custom sponsor signer (optional if sponsor_priv_key provided)
            retry_count: Number of retries for RPC HTTP requests
            logger: Optional logger instance to use for debug/info logging
            w3: Pre-built Web3 instance; skips provider construction

        Raises:
            ValueError: If neither or both of sponsor_priv_key and sponsor_signer are provided
        """
        if not sponsor_priv_key and not sponsor_signer:
            raise ValueError("Either sponsor_priv_key or sponsor_signer must be provided")
        if sponsor_priv_key and sponsor_signer:
            raise ValueError("Provide only one of sponsor_priv_key or sponsor_signer")

        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.sponsor: Signer = sponsor_signer or LocalSigner(sponsor_priv_key)

        if w3 is None:
            self.session = self._build_session(retry_count)
            w3 = Web3(Web3.HTTPProvider(
                config.rpc_url,
                request_kwargs={"timeout": config.request_timeout},
                session=self.session,
            ))
        self.w3 = w3

        self.emitter = EventEmitter()
        self.inspector = DelegationInspector(self.w3, logger=self.logger)
        self.relayer = RelayerExecutor(self.w3, self.sponsor, config, logger=self.logger)
        self._controllers: Dict[str, BatchController] = {}
        self._controllers_lock = threading.Lock()

    @staticmethod
    def _build_session(retry_count: int) -> requests.Session:
        session = requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
            raise_on_status=False,
            # Retry for connection errors and read timeouts
            connect=retry_count,
            read=retry_count,
            other=retry_count
        )
        session.mount("http://", HTTPAdapter(max_retries=retries))
        session.mount("https://", HTTPAdapter(max_retries=retries))
        return session

    @property
    def sponsor_address(self) -> str:
        """Address that pays for every transaction"""
        return self.sponsor.address

    def controller_for(self, account_signer: Signer) -> BatchController:
        """Controller for the signer's account; one per account for the client's lifetime"""
        account = Web3.to_checksum_address(account_signer.address)
        with self._controllers_lock:
            controller = self._controllers.get(account)
            if controller is None:
                controller = BatchController(
                    account_signer,
                    self.relayer,
                    self.inspector,
                    self.config,
                    emitter=self.emitter,
                    logger=self.logger,
                )
                self._controllers[account] = controller
            return controller

    def execute(
        self,
        account_signer: Signer,
        calls: Sequence[CallLike],
        value: int = 0,
        revoke_after: bool = False,
    ) -> BatchResult:
        """
        Execute ``calls`` from the signer's account in one sponsored transaction.

        Args:
            account_signer: Signer holding the account's own key
            calls: Ordered calls of the batch
            value: Native value the sponsor attaches
            revoke_after: Revoke the delegation after the batch

        Returns:
            BatchResult with every receipt of the run
        """
        return self.controller_for(account_signer).execute(calls, value=value, revoke_after=revoke_after)

    def revoke(self, account_signer: Signer) -> Optional[TxReceipt]:
        """Return the account to a plain account; None if it was not delegated"""
        return self.controller_for(account_signer).revoke()

    def delegation_of(self, account: str) -> DelegationDesignator:
        return self.inspector.read_designator(account)

    def batch_nonce(self, account: str) -> int:
        return self.inspector.batch_nonce(account)

    def coordinator(self, max_workers: int = 4) -> BatchCoordinator:
        """
        Create a coordinator for running many accounts in parallel.

        The coordinator shares this client's controllers, so a batch started
        through ``execute`` and one queued on the coordinator for the same
        account never overlap.
        """
        return BatchCoordinator(
            self.relayer,
            self.inspector,
            self.config,
            max_workers=max_workers,
            emitter=self.emitter,
            logger=self.logger,
            controller_factory=self.controller_for,
        )

    def explorer_url(self, tx_hash: str, network: str) -> Optional[str]:
        """Block explorer link for ``tx_hash`` on a packaged network"""
        return NetworkConfig.get_explorer_tx_url(network, tx_hash)
