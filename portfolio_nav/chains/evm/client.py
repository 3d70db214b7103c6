"""EVM JSON-RPC client with endpoint fallback and ABI-encoded view calls."""
from __future__ import annotations

import logging
import ssl
from typing import Any, Sequence

import aiohttp
import certifi
from eth_abi import decode, encode
from eth_utils import decode_hex, encode_hex, function_signature_to_4byte_selector

from ...config import ChainConfig
from ...exceptions import ContractCallError

logger = logging.getLogger(__name__)


def argument_types(signature: str) -> list[str]:
    """Extract the argument types from ``name(type1,type2)``."""
    start, end = signature.find("("), signature.rfind(")")
    if start < 0 or end < start:
        raise ValueError(f"Malformed function signature: {signature}")
    inner = signature[start + 1:end].strip()
    return [t.strip() for t in inner.split(",")] if inner else []


def encode_call(signature: str, args: Sequence[Any] = ()) -> str:
    """Build hex calldata: 4-byte selector followed by ABI-encoded arguments."""
    selector = function_signature_to_4byte_selector(signature)
    types = argument_types(signature)
    if len(types) != len(args):
        raise ValueError(f"{signature} expects {len(types)} args, got {len(args)}")
    return encode_hex(selector + (encode(types, list(args)) if types else b""))


def decode_result(raw: str, returns: Sequence[str]) -> tuple[Any, ...]:
    """Decode eth_call return data; an empty result means revert / no code."""
    data = decode_hex(raw or "0x")
    if not returns:
        return ()
    if not data:
        raise ContractCallError("Empty eth_call result (no contract or reverted)")
    try:
        return tuple(decode(list(returns), data))
    except Exception as e:
        raise ContractCallError(f"Unexpected return data for {list(returns)}: {e}") from e


class EvmClient:
    """EVM RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig) -> None:
        self.chain_id = config.chain_id
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        if not self.endpoints:
            raise RuntimeError(f"No RPC endpoint configured for chain {self.chain_id}")

        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            # A JSON-RPC error (e.g. execution reverted) is the contract's
            # answer, not an endpoint outage: do not retry elsewhere.
            if "error" in result:
                raise ContractCallError(f"RPC Error: {result['error']}")
            return result.get("result")

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    async def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        result = await self.rpc_call("eth_call", [{"to": to, "data": data}, block])
        if not isinstance(result, str):
            raise ContractCallError(f"Unexpected eth_call result: {result!r}")
        return result

    async def call_function(
        self,
        address: str,
        signature: str,
        args: Sequence[Any] = (),
        returns: Sequence[str] = (),
    ) -> tuple[Any, ...]:
        """Call a view function and return its decoded outputs."""
        raw = await self.eth_call(address, encode_call(signature, args))
        return decode_result(raw, returns)
