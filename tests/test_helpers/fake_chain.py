"""
In-memory chain used to drive controllers end to end without a node.

``FakeChain`` holds account code, transaction counts and one
``BatchAccountModel`` per delegated account. ``FakeWeb3`` exposes the
subset of ``w3.eth`` that ``DelegationInspector`` reads, and
``FakeRelayer`` applies sponsored transactions directly to the chain.
"""
import copy
import itertools
import threading
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from eth_abi import decode
from eth_utils import keccak, to_checksum_address

from batchrelay_sdk.batch_contract import BatchAccountModel, SignatureScheme
from batchrelay_sdk.calls import function_selector
from batchrelay_sdk.delegation import DELEGATION_PREFIX, designator_for, parse_designator
from batchrelay_sdk.exceptions import CallRevertedError, FundingError, StateMismatchError
from batchrelay_sdk.models import Authorization, BatchRequest, Call, TxReceipt

from .constants import CHAIN_ID, REVERTING_TARGET, SPONSOR

MINT = function_selector("mint(address,uint256)")
TRANSFER = function_selector("transfer(address,uint256)")
APPROVE = function_selector("approve(address,uint256)")
STAKE = function_selector("stake(uint256)")
WITHDRAW = function_selector("withdraw(uint256)")


class TokenLedger:
    """
    Business contracts behind the batch: ERC-20 tokens, staking pools and
    native balances. Implements the ``CallHandler`` protocol.
    """

    def __init__(self):
        self.balances: Dict[Tuple[str, str], int] = defaultdict(int)
        self.allowances: Dict[Tuple[str, str, str], int] = defaultdict(int)
        self.staked: Dict[Tuple[str, str], int] = defaultdict(int)
        self.native: Dict[str, int] = defaultdict(int)
        self.staking_tokens: Dict[str, str] = {}

    def balance_of(self, token: str, holder: str) -> int:
        return self.balances[(to_checksum_address(token), to_checksum_address(holder))]

    def add_staking_pool(self, pool: str, token: str) -> None:
        self.staking_tokens[to_checksum_address(pool)] = to_checksum_address(token)

    def receive(self, account: str, value: int) -> None:
        self.native[account] += value

    def dispatch(self, sender: str, call: Call) -> Any:
        if call.to == to_checksum_address(REVERTING_TARGET):
            raise CallRevertedError("forced", reason="forced revert")

        if call.value:
            if self.native[sender] < call.value:
                raise CallRevertedError("value", reason="insufficient native balance")
            self.native[sender] -= call.value
            self.native[call.to] += call.value
        if not call.data:
            return None

        selector, args = call.data[:4], call.data[4:]
        if selector == MINT:
            to, amount = decode(["address", "uint256"], args)
            self.balances[(call.to, to_checksum_address(to))] += amount
        elif selector == TRANSFER:
            to, amount = decode(["address", "uint256"], args)
            self._move(call.to, sender, to_checksum_address(to), amount)
        elif selector == APPROVE:
            spender, amount = decode(["address", "uint256"], args)
            self.allowances[(call.to, sender, to_checksum_address(spender))] = amount
        elif selector == STAKE:
            (amount,) = decode(["uint256"], args)
            token = self.staking_tokens.get(call.to)
            if token is None:
                raise CallRevertedError("pool", reason="not a staking pool")
            allowance = self.allowances[(token, sender, call.to)]
            if allowance < amount:
                raise CallRevertedError("allowance", reason="ERC20: insufficient allowance")
            self.allowances[(token, sender, call.to)] = allowance - amount
            self._move(token, sender, call.to, amount)
            self.staked[(call.to, sender)] += amount
        elif selector == WITHDRAW:
            (amount,) = decode(["uint256"], args)
            if self.staked[(call.to, sender)] < amount:
                raise CallRevertedError("withdraw", reason="insufficient stake")
            self.staked[(call.to, sender)] -= amount
            self._move(self.staking_tokens[call.to], call.to, sender, amount)
        else:
            raise CallRevertedError("selector", reason=f"unknown selector 0x{selector.hex()}")
        return None

    def _move(self, token: str, src: str, dst: str, amount: int) -> None:
        if self.balances[(token, src)] < amount:
            raise CallRevertedError("balance", reason="ERC20: transfer amount exceeds balance")
        self.balances[(token, src)] -= amount
        self.balances[(token, dst)] += amount

    def snapshot(self) -> Any:
        return copy.deepcopy(
            (self.balances, self.allowances, self.staked, self.native)
        )

    def restore(self, state: Any) -> None:
        self.balances, self.allowances, self.staked, self.native = state


class FakeChain:
    """Account code, nonces and batch contract storage for a single chain"""

    def __init__(
        self,
        chain_id: int = CHAIN_ID,
        batch_contract: Optional[str] = None,
        scheme: SignatureScheme = SignatureScheme.PERSONAL_MESSAGE,
    ):
        self.chain_id = chain_id
        self.batch_contract = to_checksum_address(batch_contract) if batch_contract else None
        self.scheme = scheme
        self.ledger = TokenLedger()
        self.code: Dict[str, bytes] = defaultdict(bytes)
        self.tx_counts: Dict[str, int] = defaultdict(int)
        self.batch_accounts: Dict[str, BatchAccountModel] = {}
        self.skip_authorizations = False
        self.transactions: List[Tuple[str, str]] = []
        self._blocks = itertools.count(1)

    def delegate(self, account: str, target: str) -> None:
        """Set a designator directly, as if delegated earlier"""
        self.code[to_checksum_address(account)] = designator_for(target)

    def designator(self, account: str):
        return parse_designator(self.code[to_checksum_address(account)])

    def batch_nonce(self, account: str) -> int:
        model = self.batch_accounts.get(to_checksum_address(account))
        return model.nonce if model else 0

    def apply_authorization(self, authorization: Authorization) -> None:
        """
        Process one authorization entry.

        Like the real protocol, an entry with the wrong nonce or chain is
        skipped without failing the transaction.
        """
        signer = authorization.signer
        if self.skip_authorizations:
            return
        if authorization.chain_id not in (0, self.chain_id):
            return
        if authorization.nonce != self.tx_counts[signer]:
            return
        self.code[signer] = b"" if authorization.is_revocation else designator_for(authorization.address)
        self.tx_counts[signer] += 1

    def execute_batch(self, request: BatchRequest, signature: bytes, value: int = 0) -> int:
        account = request.account
        code = self.code[account]
        if not code.startswith(DELEGATION_PREFIX) or self.batch_contract is None \
                or parse_designator(code).target != self.batch_contract:
            raise StateMismatchError("account does not run the batch contract", account=account)

        model = self.batch_accounts.get(account)
        if model is None:
            model = BatchAccountModel(account, self.ledger, self.scheme)
            self.batch_accounts[account] = model

        return model.execute(request.calls, signature, value)

    def receipt(self, to: str, gas_used: int = 46000) -> TxReceipt:
        block = next(self._blocks)
        tx_hash = "0x" + keccak(text=f"{to}:{block}").hex()
        self.transactions.append((tx_hash, to_checksum_address(to)))
        return TxReceipt(
            transactionHash=tx_hash,
            blockNumber=block,
            blockHash="0x" + keccak(text=f"block:{block}").hex(),
            status=1,
            gasUsed=gas_used,
            **{"from": SPONSOR, "to": to_checksum_address(to)},
        )


class _NonceFunction:
    def __init__(self, chain: FakeChain, address: str):
        self._chain = chain
        self._address = address

    def call(self, *args, **kwargs) -> int:
        return self._chain.batch_nonce(self._address)


class _Functions:
    def __init__(self, chain: FakeChain, address: str):
        self._chain = chain
        self._address = address

    def nonce(self) -> _NonceFunction:
        return _NonceFunction(self._chain, self._address)


class _Contract:
    def __init__(self, chain: FakeChain, address: str):
        self.address = address
        self.functions = _Functions(chain, address)


class _FakeEth:
    def __init__(self, chain: FakeChain):
        self._chain = chain

    @property
    def chain_id(self) -> int:
        return self._chain.chain_id

    def get_code(self, account: str) -> bytes:
        return self._chain.code[to_checksum_address(account)]

    def get_transaction_count(self, account: str, block_identifier: str = "latest") -> int:
        return self._chain.tx_counts[to_checksum_address(account)]

    def contract(self, address: str, abi: Any) -> _Contract:
        return _Contract(self._chain, to_checksum_address(address))


class FakeWeb3:
    """The read side of ``Web3`` backed by a ``FakeChain``"""

    def __init__(self, chain: FakeChain):
        self.eth = _FakeEth(chain)


class FakeRelayer:
    """
    Applies sponsored transactions straight to a ``FakeChain``.

    Set ``fail_with`` to make the next submission raise that error instead.
    """

    def __init__(self, chain: FakeChain, address: str = SPONSOR):
        self.chain = chain
        self.address = address
        self.chain_id = chain.chain_id
        self.authorizations: List[Authorization] = []
        self.batches: List[Tuple[BatchRequest, bytes, int]] = []
        self.fail_with: Optional[Exception] = None
        self.sponsor_balance: Optional[int] = None
        # Transactions land one at a time, as in a block
        self._lock = threading.Lock()

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            error, self.fail_with = self.fail_with, None
            raise error
        if self.sponsor_balance == 0:
            raise FundingError(f"Sponsor {self.address} cannot pay: insufficient funds for gas")

    def submit_authorization(self, authorization: Authorization) -> TxReceipt:
        with self._lock:
            self._maybe_fail()
            self.authorizations.append(authorization)
            self.chain.apply_authorization(authorization)
            return self.chain.receipt(authorization.signer)

    def submit_batch(self, request: BatchRequest, signature: bytes, value: int = 0) -> TxReceipt:
        with self._lock:
            self._maybe_fail()
            self.batches.append((request, signature, value))
            self.chain.execute_batch(request, signature, value)
            return self.chain.receipt(request.account, gas_used=60000 + 25000 * len(request.calls))
