"""
Wire schema for the CKB light client JSON-RPC interface.

Quantities are ``0x`` hex strings on the wire and plain ``int`` in Python;
``HexInt`` converts in both directions. Models ignore unknown fields so newer
light client releases keep decoding, but required fields and tagged values
(``Literal`` fields) are strict: an unexpected shape fails validation and the
backend reports it as a ``QueryError``.
"""

from __future__ import annotations

from typing import Annotated, Generic, Literal, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer

from pocketsync.amount import parse_hex_quantity, to_hex_quantity

# Light client RPC shape these models were written against (ckb-light-client 0.3.x)
RPC_SCHEMA_VERSION = "0.3"


def _decode_hex(value: object) -> object:
    if isinstance(value, str):
        return parse_hex_quantity(value)
    return value


HexInt = Annotated[
    int,
    BeforeValidator(_decode_hex),
    Field(ge=0),
    PlainSerializer(to_hex_quantity, return_type=str),
]

T = TypeVar("T")


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Script(WireModel):
    code_hash: str
    hash_type: Literal["type", "data", "data1", "data2"]
    args: str

    def normalized(self) -> Script:
        """Lowercase copy used for comparisons."""
        return Script(
            code_hash=self.code_hash.lower(),
            hash_type=self.hash_type,
            args=self.args.lower(),
        )

    def matches(self, other: Script) -> bool:
        return self.normalized() == other.normalized()


class OutPoint(WireModel):
    tx_hash: str
    index: HexInt

    @property
    def key(self) -> str:
        """Identity string ``tx_hash:index`` used for spent-set membership."""
        return f"{self.tx_hash.lower()}:{self.index}"


class CellDep(WireModel):
    out_point: OutPoint
    dep_type: Literal["code", "dep_group"]


class CellInput(WireModel):
    since: HexInt = 0
    previous_output: OutPoint


class CellOutput(WireModel):
    capacity: HexInt
    lock: Script
    type: Script | None = None


class Transaction(WireModel):
    """A signed transaction ready for ``send_transaction``."""

    version: HexInt = 0
    cell_deps: list[CellDep] = Field(default_factory=list)
    header_deps: list[str] = Field(default_factory=list)
    inputs: list[CellInput] = Field(default_factory=list)
    outputs: list[CellOutput] = Field(default_factory=list)
    outputs_data: list[str] = Field(default_factory=list)
    witnesses: list[str] = Field(default_factory=list)


class TransactionView(Transaction):
    hash: str


class ScriptStatus(WireModel):
    """A script registered with the light client plus the block it has synced to."""

    script: Script
    script_type: Literal["lock", "type"] = "lock"
    block_number: HexInt


class SearchKeyFilter(WireModel):
    script: Script | None = None
    block_range: list[HexInt] | None = None


class SearchKey(WireModel):
    script: Script
    script_type: Literal["lock", "type"] = "lock"
    filter: SearchKeyFilter | None = None
    with_data: bool = True


class HeaderView(WireModel):
    hash: str
    number: HexInt
    epoch: HexInt = 0
    timestamp: HexInt = 0
    parent_hash: str | None = None
    dao: str | None = None
    nonce: HexInt | None = None


class CellsCapacity(WireModel):
    capacity: HexInt
    block_number: HexInt
    block_hash: str | None = None


class IndexerCell(WireModel):
    output: CellOutput
    output_data: str | None = None
    out_point: OutPoint
    block_number: HexInt
    tx_index: HexInt = 0


class TxWithCell(WireModel):
    transaction: TransactionView
    block_number: HexInt
    tx_index: HexInt = 0
    io_index: HexInt = 0
    io_type: Literal["input", "output"]
    io_capacity: HexInt = 0


class Page(WireModel, Generic[T]):
    objects: list[T] = Field(default_factory=list)
    last_cursor: str | None = None


class TxStatus(WireModel):
    status: Literal["pending", "proposed", "committed", "unknown", "rejected"]
    block_hash: str | None = None
    reason: str | None = None


class TransactionWithStatus(WireModel):
    transaction: TransactionView | None = None
    cycles: HexInt | None = None
    tx_status: TxStatus


class RemoteNode(WireModel):
    version: str = ""
    node_id: str
    connected_duration: HexInt = 0


class LocalNode(WireModel):
    version: str
    node_id: str
    active: bool = True


__all__ = [
    "RPC_SCHEMA_VERSION",
    "HexInt",
    "Script",
    "OutPoint",
    "CellDep",
    "CellInput",
    "CellOutput",
    "Transaction",
    "TransactionView",
    "ScriptStatus",
    "SearchKeyFilter",
    "SearchKey",
    "HeaderView",
    "CellsCapacity",
    "IndexerCell",
    "TxWithCell",
    "Page",
    "TxStatus",
    "TransactionWithStatus",
    "RemoteNode",
    "LocalNode",
]
