"""Unit tests for calldata encoding and result decoding."""
from __future__ import annotations

import pytest
from eth_abi import encode

from portfolio_nav.chains.evm.client import argument_types, decode_result, encode_call
from portfolio_nav.exceptions import ContractCallError

TOKEN = "0x" + "ab" * 20


class TestArgumentTypes:
    def test_no_args(self) -> None:
        assert argument_types("decimals()") == []

    def test_multiple_args(self) -> None:
        assert argument_types("toAssets(uint256, uint8)") == ["uint256", "uint8"]

    def test_malformed(self) -> None:
        with pytest.raises(ValueError):
            argument_types("decimals")


class TestEncodeCall:
    def test_selector_only(self) -> None:
        # keccak("decimals()")[:4]
        assert encode_call("decimals()") == "0x313ce567"

    def test_with_args(self) -> None:
        data = encode_call("toAssets(uint256,uint8)", (10**18, 0))
        assert data.startswith("0x")
        assert len(data) == 2 + 8 + 64 * 2
        assert data.endswith("0" * 64)

    def test_wrong_arg_count(self) -> None:
        with pytest.raises(ValueError, match="expects 2 args"):
            encode_call("toAssets(uint256,uint8)", (1,))


class TestDecodeResult:
    def test_uint8(self) -> None:
        raw = "0x" + encode(["uint8"], [18]).hex()
        assert decode_result(raw, ["uint8"]) == (18,)

    def test_arrays(self) -> None:
        raw = "0x" + encode(["address[]", "uint256[]"], [[TOKEN], [5]]).hex()
        assets, amounts = decode_result(raw, ["address[]", "uint256[]"])
        assert [a.lower() for a in assets] == [TOKEN]
        assert list(amounts) == [5]

    def test_empty_result_raises(self) -> None:
        with pytest.raises(ContractCallError, match="Empty eth_call result"):
            decode_result("0x", ["uint8"])

    def test_bad_shape_raises(self) -> None:
        with pytest.raises(ContractCallError, match="Unexpected return data"):
            decode_result("0x01", ["address[]", "uint256[]"])

    def test_no_returns(self) -> None:
        assert decode_result("0x", []) == ()
