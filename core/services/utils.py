from collections.abc import Mapping
from typing import Any, Dict

from hexbytes import HexBytes
from web3 import Web3


def _plain(value: Any) -> Any:
    if isinstance(value, HexBytes):
        return Web3.to_hex(value)
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    # AttributeDict and other dict-likes
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_plain(v) for v in value]
    return str(value)


def receipt_to_json(receipt: Mapping) -> Dict[str, Any]:
    """
    Transaction receipt as plain JSON values, hashes and bytes as 0x strings.

    Used for error payloads, so logs are dropped to keep them short.
    """
    out = {str(k): _plain(v) for k, v in dict(receipt).items() if k != "logs"}
    out["logs_count"] = len(receipt.get("logs") or [])
    return out
