"""
Parallel batch execution across many accounts sharing one sponsor.
"""
import functools
import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Deque, Dict, Iterable, Optional, Sequence, Tuple, Union

from eth_utils import to_checksum_address

from .config import RelayConfig
from .controller import BatchController
from .delegation import DelegationInspector
from .encoding import CallLike
from .events import EventEmitter
from .models import BatchResult
from .relayer import RelayerExecutor
from .signer import Signer

# (signer, calls) or (signer, calls, execute kwargs)
Job = Union[Tuple[Signer, Sequence[CallLike]], Tuple[Signer, Sequence[CallLike], Dict[str, Any]]]


class BatchCoordinator:
    """
    Runs controllers for different accounts concurrently.

    Each account gets exactly one ``BatchController`` and its own FIFO queue
    of jobs; at most one job per account runs at a time while other accounts
    proceed on the remaining workers.
    The shared relayer serializes sponsor nonce use.
    """

    def __init__(
        self,
        relayer: RelayerExecutor,
        inspector: DelegationInspector,
        config: RelayConfig,
        max_workers: int = 4,
        emitter: Optional[EventEmitter] = None,
        logger: Optional[logging.Logger] = None,
        controller_factory: Optional[Callable[[Signer], BatchController]] = None,
    ):
        """
        Args:
            max_workers: Accounts processed in parallel
            controller_factory: Source of per-account controllers; lets a
                client share its controllers (and their locks) with the pool
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.relayer = relayer
        self.inspector = inspector
        self.config = config
        self.emitter = emitter or EventEmitter()
        self.logger = logger or logging.getLogger(__name__)
        self._controller_factory = controller_factory
        self._controllers: Dict[str, BatchController] = {}
        self._controllers_lock = threading.Lock()
        # Accounts with a running job, mapped to their jobs still waiting
        self._queues: Dict[str, Deque[Tuple[Callable[[], BatchResult], Future]]] = {}
        self._queues_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="batchrelay")

    def controller_for(self, signer: Signer) -> BatchController:
        """Return the controller for ``signer``'s account, creating it once"""
        if self._controller_factory is not None:
            return self._controller_factory(signer)
        account = to_checksum_address(signer.address)
        with self._controllers_lock:
            controller = self._controllers.get(account)
            if controller is None:
                controller = BatchController(
                    signer,
                    self.relayer,
                    self.inspector,
                    self.config,
                    emitter=self.emitter,
                    logger=self.logger,
                )
                self._controllers[account] = controller
            return controller

    def submit(self, signer: Signer, calls: Sequence[CallLike], **kwargs: Any) -> "Future[BatchResult]":
        """
        Schedule a batch for ``signer``'s account.

        Jobs of one account run one after another in submission order. Only
        the account's running job occupies a worker; the rest wait in the
        account's queue, so a busy account never blocks the others.

        Args:
            signer: Signer of the delegated account
            calls: Ordered calls of the batch
            **kwargs: Passed to ``BatchController.execute`` (``value``, ``revoke_after``)

        Returns:
            Future resolving to the BatchResult or raising the run's error
        """
        controller = self.controller_for(signer)
        account = to_checksum_address(controller.account)
        job = functools.partial(controller.execute, calls, **kwargs)
        future: "Future[BatchResult]" = Future()

        with self._queues_lock:
            pending = self._queues.get(account)
            if pending is None:
                self._executor.submit(self._drain, account, job, future)
                self._queues[account] = deque()
            else:
                pending.append((job, future))
        self.logger.debug(f"Queued batch of {len(calls)} calls for {account}")
        return future

    def _drain(self, account: str, job: Callable[[], BatchResult], future: "Future[BatchResult]") -> None:
        """Run ``account``'s jobs in order until its queue is empty"""
        while True:
            if future.set_running_or_notify_cancel():
                try:
                    future.set_result(job())
                except Exception as e:
                    future.set_exception(e)
            with self._queues_lock:
                pending = self._queues[account]
                if not pending:
                    del self._queues[account]
                    return
                job, future = pending.popleft()

    def execute_all(self, jobs: Iterable[Job]) -> Dict[str, Union[BatchResult, Exception]]:
        """
        Run every job and wait for all of them.

        A failing account does not stop the others; its entry holds the
        exception instead of a result. When one account has several jobs, the
        entry holds the last job's outcome.

        Returns:
            Mapping of account address to BatchResult or exception
        """
        futures = []
        for job in jobs:
            signer, calls = job[0], job[1]
            kwargs = job[2] if len(job) > 2 else {}
            futures.append((to_checksum_address(signer.address), self.submit(signer, calls, **kwargs)))

        outcomes: Dict[str, Union[BatchResult, Exception]] = {}
        for account, future in futures:
            try:
                outcomes[account] = future.result()
            except Exception as e:
                self.logger.error(f"Batch for {account} failed: {e}")
                outcomes[account] = e
        return outcomes

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "BatchCoordinator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)
