"""Tests for the light client wire schema."""

from __future__ import annotations

import pydantic
import pytest
from _pocketsync_test_helpers import TEST_LOCK_SCRIPT, make_hash

from pocketsync.backends.models import (
    HeaderView,
    IndexerCell,
    OutPoint,
    Page,
    Script,
    ScriptStatus,
    SearchKey,
    TransactionWithStatus,
    TxWithCell,
)


class TestHexFields:
    def test_header_decodes_hex(self) -> None:
        header = HeaderView.model_validate(
            {
                "hash": make_hash(1),
                "number": "0x3e8",
                "epoch": "0x7080291000049",
                "timestamp": "0x18c8d0a0ae0",
                "dao": "0x" + "00" * 32,
                "unknown_future_field": True,
            }
        )
        assert header.number == 1000
        assert header.timestamp == 0x18C8D0A0AE0

    def test_rejects_missing_prefix(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            HeaderView.model_validate({"hash": make_hash(1), "number": "3e8"})

    def test_script_status_serializes_hex(self) -> None:
        status = ScriptStatus(script=TEST_LOCK_SCRIPT, block_number=18_300_000)
        dumped = status.model_dump(mode="json")
        assert dumped["block_number"] == "0x1173c60"
        assert dumped["script_type"] == "lock"
        assert dumped["script"]["hash_type"] == "type"

    def test_search_key_omits_empty_filter(self) -> None:
        dumped = SearchKey(script=TEST_LOCK_SCRIPT).model_dump(mode="json", exclude_none=True)
        assert "filter" not in dumped
        assert dumped["script_type"] == "lock"


class TestTaggedFields:
    def test_unknown_tx_status_without_transaction(self) -> None:
        result = TransactionWithStatus.model_validate({"tx_status": {"status": "unknown"}})
        assert result.transaction is None
        assert result.tx_status.status == "unknown"

    def test_unexpected_tx_status_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            TransactionWithStatus.model_validate({"tx_status": {"status": "exploded"}})

    def test_unexpected_io_type_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            TxWithCell.model_validate(
                {
                    "transaction": {"hash": make_hash(1)},
                    "block_number": "0x1",
                    "io_type": "sideways",
                }
            )

    def test_page_of_cells(self) -> None:
        page = Page[IndexerCell].model_validate(
            {
                "objects": [
                    {
                        "output": {
                            "capacity": "0x16b969d00",
                            "lock": TEST_LOCK_SCRIPT.model_dump(),
                        },
                        "output_data": "0x",
                        "out_point": {"tx_hash": make_hash(7), "index": "0x1"},
                        "block_number": "0x64",
                        "tx_index": "0x0",
                    }
                ],
                "last_cursor": "0xabc",
            }
        )
        assert page.objects[0].output.capacity == 6_100_000_000
        assert page.objects[0].out_point.index == 1
        assert page.last_cursor == "0xabc"


class TestIdentity:
    def test_out_point_key_is_case_insensitive(self) -> None:
        upper = OutPoint(tx_hash=make_hash(0xABC).upper().replace("0X", "0x"), index=2)
        lower = OutPoint(tx_hash=make_hash(0xABC), index="0x2")
        assert upper.key == lower.key == f"{make_hash(0xABC)}:2"

    def test_script_matches_ignores_case(self) -> None:
        shouted = Script(
            code_hash=TEST_LOCK_SCRIPT.code_hash.upper().replace("0X", "0x"),
            hash_type="type",
            args=TEST_LOCK_SCRIPT.args.upper().replace("0X", "0x"),
        )
        assert shouted.matches(TEST_LOCK_SCRIPT)
        assert not shouted.matches(
            Script(code_hash=TEST_LOCK_SCRIPT.code_hash, hash_type="data", args=TEST_LOCK_SCRIPT.args)
        )
