"""
Ledger-call payloads, transactions and results.

An ``EntryFunction`` names one entry point of the on-chain confidential
asset module and carries its positional arguments; the argument order is a
wire contract with the module.  Arguments stay typed (bytes, int, str, bool)
until they are rendered to the node's JSON form, where bytes become ``0x``
hex and integers become decimal strings.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


def encode_argument(value: Any) -> Any:
    """JSON form of a single entry-function argument."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [encode_argument(v) for v in value]
    return value


@dataclass(frozen=True)
class EntryFunction:
    """``module_address::module_name::name(arguments...)``"""

    module_address: str
    module_name: str
    name: str
    arguments: Tuple[Any, ...] = ()
    type_arguments: Tuple[str, ...] = ()

    @property
    def function_id(self) -> str:
        return f"{self.module_address}::{self.module_name}::{self.name}"

    def to_json(self) -> Dict[str, Any]:
        return {
            "type": "entry_function_payload",
            "function": self.function_id,
            "type_arguments": list(self.type_arguments),
            "arguments": [encode_argument(a) for a in self.arguments],
        }

    def __repr__(self) -> str:
        return f"EntryFunction({self.function_id}, {len(self.arguments)} args)"


@dataclass(frozen=True)
class ViewRequest:
    """Read-only call: ``function_id(arguments...)`` returning a JSON list."""

    module_address: str
    module_name: str
    name: str
    arguments: Tuple[Any, ...] = ()

    @property
    def function_id(self) -> str:
        return f"{self.module_address}::{self.module_name}::{self.name}"

    def to_json(self) -> Dict[str, Any]:
        return {
            "function": self.function_id,
            "type_arguments": [],
            "arguments": [encode_argument(a) for a in self.arguments],
        }


@dataclass(frozen=True)
class Transaction:
    """
    An unsigned transaction: one payload from one sender at one sequence
    number.  The hash covers exactly those three fields.
    """

    sender: str
    sequence_number: int
    payload: EntryFunction
    max_gas_amount: int = 200_000
    expiration_secs: Optional[int] = None

    def to_json(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "sender": self.sender,
            "sequence_number": str(self.sequence_number),
            "max_gas_amount": str(self.max_gas_amount),
            "payload": self.payload.to_json(),
        }
        if self.expiration_secs is not None:
            body["expiration_timestamp_secs"] = str(self.expiration_secs)
        return body

    @property
    def hash(self) -> str:
        canonical = json.dumps(
            {
                "sender": self.sender,
                "sequence_number": self.sequence_number,
                "payload": self.payload.to_json(),
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return "0x" + hashlib.sha3_256(canonical.encode()).hexdigest()

    def __repr__(self) -> str:
        return (
            f"Transaction({self.sender}#{self.sequence_number} "
            f"{self.payload.function_id})"
        )


@dataclass(frozen=True)
class TransactionResult:
    """Committed outcome reported by the ledger."""

    hash: str
    success: bool
    vm_status: str
    version: Optional[int] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> TransactionResult:
        version = data.get("version")
        return cls(
            hash=data["hash"],
            success=bool(data.get("success", False)),
            vm_status=data.get("vm_status", ""),
            version=int(version) if version is not None else None,
        )
