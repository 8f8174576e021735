"""
Calldata builders for common batch entries.

Each helper returns a ``Call`` targeting a business contract; the batch
contract itself never interprets the data it forwards.
"""
from typing import Any, Sequence

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from .models import Call


def function_selector(signature: str) -> bytes:
    """First four bytes of ``keccak256(signature)``, e.g. ``transfer(address,uint256)``"""
    return keccak(text=signature)[:4]


def encode_function_call(signature: str, types: Sequence[str], args: Sequence[Any]) -> bytes:
    """
    ABI-encode a function call.

    Args:
        signature: Canonical function signature
        types: ABI types of the arguments, in order
        args: Argument values

    Returns:
        Selector followed by the encoded arguments
    """
    if len(types) != len(args):
        raise ValueError(f"{signature}: expected {len(types)} arguments, got {len(args)}")
    return function_selector(signature) + encode(list(types), list(args))


def erc20_transfer(token: str, to: str, amount: int) -> Call:
    # transfer(address,uint256)
    data = encode_function_call("transfer(address,uint256)", ["address", "uint256"], [to_checksum_address(to), amount])
    return Call(to=token, value=0, data=data)


def erc20_approve(token: str, spender: str, amount: int) -> Call:
    # approve(address,uint256)
    data = encode_function_call(
        "approve(address,uint256)", ["address", "uint256"], [to_checksum_address(spender), amount]
    )
    return Call(to=token, value=0, data=data)


def erc20_mint(token: str, to: str, amount: int) -> Call:
    """``mint(address,uint256)`` on a token that exposes open minting"""
    data = encode_function_call("mint(address,uint256)", ["address", "uint256"], [to_checksum_address(to), amount])
    return Call(to=token, value=0, data=data)


def stake_call(staking: str, amount: int) -> Call:
    """``stake(uint256)``; the staking contract pulls tokens via a prior approval"""
    return Call(to=staking, value=0, data=encode_function_call("stake(uint256)", ["uint256"], [amount]))


def withdraw_call(staking: str, amount: int) -> Call:
    return Call(to=staking, value=0, data=encode_function_call("withdraw(uint256)", ["uint256"], [amount]))


def native_transfer(to: str, amount: int) -> Call:
    """Plain value transfer with empty calldata"""
    return Call(to=to, value=amount, data=b"")
