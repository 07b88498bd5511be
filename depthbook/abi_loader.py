import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector
from web3 import Web3

from depthbook.types import Call, CallResult

ABI_DIR = Path(__file__).with_name("abis")


def _load_single_abi(abi_dir: Path, name: str) -> list[dict]:
    path = abi_dir / f"{name}.json"
    if not path.exists():
        raise FileNotFoundError(f"ABI file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=None)
def load_abi(name: str) -> Tuple[dict, ...]:
    return tuple(_load_single_abi(ABI_DIR, name))


def _abi_type(param: dict) -> str:
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(_abi_type(component) for component in param.get("components", []))
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


@dataclass(frozen=True)
class ContractMethod:
    name: str
    input_types: Tuple[str, ...]
    output_types: Tuple[str, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.input_types)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode(self, target: str, *args) -> Call:
        call_data = self.selector + encode(list(self.input_types), list(args))
        return Call(target=Web3.to_checksum_address(target), call_data=call_data)

    def decode(self, result: CallResult) -> Optional[tuple]:
        """Decoded outputs, or None when the sub-call failed or returned junk."""
        if not result.success or not result.return_data:
            return None
        try:
            return tuple(decode(list(self.output_types), result.return_data))
        except (DecodingError, OverflowError, ValueError):
            return None


@lru_cache(maxsize=None)
def load_method(abi_name: str, fn_name: str) -> ContractMethod:
    for entry in load_abi(abi_name):
        if entry.get("type") == "function" and entry.get("name") == fn_name:
            return ContractMethod(
                name=fn_name,
                input_types=tuple(_abi_type(p) for p in entry.get("inputs", [])),
                output_types=tuple(_abi_type(p) for p in entry.get("outputs", [])),
            )
    raise KeyError(f"{fn_name} not found in ABI {abi_name}")
