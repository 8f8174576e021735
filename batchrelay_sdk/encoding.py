"""
Canonical encoding of call batches and the digest the signer signs.

The batch contract recomputes

    keccak256(abi.encodePacked(nonce, abi.encodePacked(to, value, data)...))

on-chain, so every byte produced here has to match it exactly: ``to`` as 20
bytes, ``value`` and ``nonce`` as 32-byte big-endian words and ``data`` raw,
with no padding between calls.
"""
import logging
from typing import Any, Iterable, List, Sequence, Union

from eth_abi.packed import encode_packed
from eth_utils import keccak
from pydantic import ValidationError

from .exceptions import EncodingError
from .models import BatchRequest, Call, UINT256_MAX

logger = logging.getLogger(__name__)

CallLike = Union[Call, dict]


def to_calls(calls: Iterable[CallLike]) -> List[Call]:
    """
    Normalize dictionaries or ``Call`` objects into a list of ``Call``.

    Raises:
        EncodingError: If any entry is not a valid call
    """
    result = []
    for index, call in enumerate(calls):
        if isinstance(call, Call):
            result.append(call)
            continue
        try:
            result.append(Call.model_validate(call))
        except ValidationError as e:
            raise EncodingError(f"Invalid call at index {index}: {e}")
    return result


def encode_call(call: Call) -> bytes:
    """Packed encoding of a single call: ``to || value || data``"""
    return encode_packed(["address", "uint256", "bytes"], [call.to, call.value, call.data])


def encode_calls(calls: Sequence[CallLike]) -> bytes:
    """
    Concatenate the packed encodings of ``calls`` in order.

    Args:
        calls: Ordered calls; order is part of the signed payload

    Returns:
        Canonical byte string of the batch
    """
    return b"".join(encode_call(call) for call in to_calls(calls))


def _check_nonce(nonce: Any) -> int:
    if isinstance(nonce, bool) or not isinstance(nonce, int):
        raise EncodingError(f"Nonce must be an integer, got {type(nonce).__name__}")
    if nonce < 0 or nonce > UINT256_MAX:
        raise EncodingError(f"Nonce out of uint256 range: {nonce}")
    return nonce


def batch_digest(nonce: int, calls: Sequence[CallLike]) -> bytes:
    """
    Compute the digest a signer authorizes for ``calls`` at ``nonce``.

    Args:
        nonce: The batch contract's current nonce for the account
        calls: Ordered calls of the batch

    Returns:
        32-byte keccak256 digest

    Raises:
        EncodingError: If the nonce or calls are invalid, or the batch is empty
    """
    nonce = _check_nonce(nonce)
    call_list = to_calls(calls)
    if not call_list:
        raise EncodingError("A batch must contain at least one call")
    encoded = encode_calls(call_list)
    digest = keccak(encode_packed(["uint256", "bytes"], [nonce, encoded]))
    logger.debug(f"Batch digest for nonce {nonce} over {len(call_list)} calls: 0x{digest.hex()}")
    return digest


def build_batch_request(account: str, nonce: int, calls: Sequence[CallLike]) -> BatchRequest:
    """
    Validate and bundle a batch for signing and submission.

    Raises:
        EncodingError: If any part of the batch is invalid
    """
    nonce = _check_nonce(nonce)
    call_list = to_calls(calls)
    if not call_list:
        raise EncodingError("A batch must contain at least one call", account=account, nonce=nonce)
    try:
        return BatchRequest(account=account, nonce=nonce, calls=tuple(call_list))
    except ValidationError as e:
        raise EncodingError(f"Invalid batch request: {e}", nonce=nonce)
