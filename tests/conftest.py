"""Shared test fixtures and sample data."""
from __future__ import annotations

import re
import textwrap
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest

from portfolio_nav.config import (
    DEFAULT_SPAM_PATTERNS,
    AppConfig,
    ChainConfig,
    ClassifierConfig,
    CompositeTokenConfig,
    PriceRedirectConfig,
    ProviderConfig,
    ValuationConfig,
)
from portfolio_nav.exceptions import ContractCallError
from portfolio_nav.models import Holding

WALLET = "0x1234567890abcdef1234567890abcdef12345678"

# Composite fixtures: A is a plain basket, B holds A plus WETH.
TOKEN_A = "0x" + "aa" * 20
TOKEN_B = "0x" + "bb" * 20
WETH = "0x" + "e0" * 20
USDC = "0x" + "c0" * 20
RSR = "0x320623b8e4ff03373931769a31fc52a4e78b5d70"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeOracle:
    """PriceOracle backed by a dict; records every lookup."""

    def __init__(self, prices: dict[str, float] | None = None) -> None:
        self.prices = {k.lower(): v for k, v in (prices or {}).items()}
        self.calls: list[str] = []
        self.failing: set[str] = set()

    async def get_token_price(self, address: str, chain: ChainConfig) -> float | None:
        self.calls.append(address.lower())
        if address.lower() in self.failing:
            raise RuntimeError(f"lookup failed for {address}")
        return self.prices.get(address.lower())


class FakeReader:
    """ContractReader answering from a ``(address, signature) -> outputs`` table."""

    def __init__(self, answers: dict[tuple[str, str], Any] | None = None) -> None:
        self.answers = {(a.lower(), s): v for (a, s), v in (answers or {}).items()}
        self.calls: list[tuple[str, str, tuple]] = []

    def set(self, address: str, signature: str, outputs: Any) -> None:
        self.answers[(address.lower(), signature)] = outputs

    async def call_function(
        self,
        address: str,
        signature: str,
        args: Sequence[Any] = (),
        returns: Sequence[str] = (),
    ) -> tuple[Any, ...]:
        self.calls.append((address.lower(), signature, tuple(args)))
        answer = self.answers.get((address.lower(), signature))
        if answer is None:
            raise ContractCallError(f"execution reverted: {signature} on {address}")
        if isinstance(answer, Exception):
            raise answer
        return answer

    def add_erc20(self, address: str, symbol: str, decimals: int) -> None:
        self.set(address, "symbol()", (symbol,))
        self.set(address, "decimals()", (decimals,))

    def add_direct_basket(
        self, address: str, assets: list[str], amounts: list[int], decimals: int = 18
    ) -> None:
        self.set(address, "decimals()", (decimals,))
        self.set(address, "toAssets(uint256,uint8)", (tuple(assets), tuple(amounts)))


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def eth_chain() -> ChainConfig:
    return ChainConfig(
        chain_id=1,
        name="ethereum",
        provider_chain="eth",
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
    )


@pytest.fixture()
def base_chain() -> ChainConfig:
    return ChainConfig(chain_id=8453, name="base", provider_chain="base", rpc_timeout=10)


@pytest.fixture()
def fast_valuation() -> ValuationConfig:
    return ValuationConfig(price_batch_delay=0.0, basket_call_delay=0.0)


@pytest.fixture()
def sample_classifier_config() -> ClassifierConfig:
    return ClassifierConfig(
        spam_symbols={1: frozenset({"ETHG"})},
        spam_patterns=tuple(re.compile(p, re.IGNORECASE) for p in DEFAULT_SPAM_PATTERNS),
        price_redirects=(
            PriceRedirectConfig(
                chain_id=1,
                address="0x86b5780b606940eb59a062aa85a07959518c0161",
                lookup_address="0xfe0c30065b384f05761f15d0cc899d4f9f9cc0eb",
                note="sETHFI priced as ETHFI",
                mode="always",
            ),
            PriceRedirectConfig(
                chain_id=1,
                address="0x744119681198b157a20d3e70ec2a456672bcded4",
                lookup_address=RSR,
                note="vlRSR priced as RSR",
                mode="fallback",
            ),
        ),
    )


@pytest.fixture()
def sample_app_config(
    eth_chain: ChainConfig,
    base_chain: ChainConfig,
    fast_valuation: ValuationConfig,
    sample_classifier_config: ClassifierConfig,
) -> AppConfig:
    return AppConfig(
        valuation=fast_valuation,
        chains={"ethereum": eth_chain, "base": base_chain},
        provider=ProviderConfig(api_key="test-key"),
        classifier=sample_classifier_config,
        protocol_tokens={"EtherFi": {1: ("0xcd5fe23c85820f7b72d0926fc9b05b43e359b7ee",)}},
        composite_tokens=(
            CompositeTokenConfig(chain_id=1, address=TOKEN_A, symbol="A", type="basket-direct"),
            CompositeTokenConfig(
                chain_id=1,
                address=TOKEN_B,
                symbol="B",
                type="basket-direct",
                depends_on=(TOKEN_A,),
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_holding() -> Callable[..., Holding]:
    def _make(
        symbol: str = "TKN",
        value: float | None = 100.0,
        balance: float = 1.0,
        chain_id: int = 1,
        address: str | None = None,
        **kwargs: Any,
    ) -> Holding:
        price = value / balance if value is not None and balance else None
        return Holding(
            chain_id=chain_id,
            chain="ethereum" if chain_id == 1 else "base",
            address=address or "0x" + symbol.lower().encode().hex().ljust(40, "0")[:40],
            symbol=symbol,
            name=kwargs.pop("name", f"{symbol} Token"),
            decimals=kwargs.pop("decimals", 18),
            balance=str(int(balance * 10**18)),
            balance_formatted=balance,
            price=price,
            value=value,
            price_source=kwargs.pop("price_source", "market" if price is not None else None),
            **kwargs,
        )

    return _make


@pytest.fixture()
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture()
def reader() -> FakeReader:
    return FakeReader()


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    valuation:
      dust_threshold_usd: 2.5
      risk_free_rate: 0.05
    provider:
      api_key: "test-key"
    chains:
      ethereum:
        chain_id: 1
        provider_chain: eth
        rpc_endpoints: ["https://rpc.example.com"]
        rpc_timeout: 10
      base:
        chain_id: 8453
        provider_chain: base
    classifier:
      spam_symbols:
        1: ["ETHG"]
      price_redirects:
        - chain_id: 1
          address: "0x86B5780B606940EB59A062AA85A07959518C0161"
          lookup_address: "0xfe0c30065b384f05761f15d0cc899d4f9f9cc0eb"
          note: "sETHFI priced as ETHFI"
    protocol_tokens:
      EtherFi:
        1: ["0xCD5FE23C85820F7B72D0926FC9B05B43E359B7EE"]
    composite_tokens:
      - chain_id: 1
        symbol: ixETH
        address: "0x60105cbd0499199ca84f63ee9198b2a2d5441699"
        type: basket-direct
        depends_on: ["0xe4a10951f962e6cb93cb843a4ef05d2f99db1f94"]
      - chain_id: 1
        symbol: ixEdel
        address: "0xe4a10951f962e6cb93cb843a4ef05d2f99db1f94"
        type: basket-direct
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# Sample provider payloads
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_wallet_tokens() -> list[dict]:
    return [
        {
            "token_address": "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee",
            "symbol": "ETH",
            "name": "Ether",
            "decimals": 18,
            "balance": "2000000000000000000",
            "balance_formatted": "2.0",
            "usd_price": 3000.0,
            "usd_value": 6000.0,
            "native_token": True,
        },
        {
            "token_address": "0xCD5FE23C85820F7B72D0926FC9B05B43E359B7EE",
            "symbol": "weETH",
            "name": "Wrapped eETH",
            "decimals": 18,
            "balance": "1000000000000000000",
            "balance_formatted": "1.0",
            "usd_price": 3200.0,
        },
        {
            "token_address": TOKEN_B,
            "symbol": "B",
            "name": "Basket B",
            "decimals": 18,
            "balance": "10000000000000000000",
            "balance_formatted": "10.0",
            "usd_price": None,
        },
    ]


@pytest.fixture()
def sample_defi_positions() -> list[dict]:
    return [
        {
            "protocol_name": "EtherFi",
            "protocol_id": "etherfi",
            "protocol_logo": "https://logo.example.com/etherfi.png",
            "position": {
                "label": "Staking",
                "balance_usd": 3200.0,
                "tokens": [
                    {
                        "token_type": "supplied",
                        "symbol": "weETH",
                        "name": "Wrapped eETH",
                        "contract_address": "0xcd5fe23c85820f7b72d0926fc9b05b43e359b7ee",
                        "decimals": 18,
                        "balance": "1000000000000000000",
                        "balance_formatted": "1.0",
                        "usd_price": 3200.0,
                        "usd_value": 3200.0,
                    }
                ],
            },
        },
        {
            "protocol_name": "Aave v3",
            "protocol_id": "aave-v3",
            "position": {
                "label": "Lending",
                "tokens": [
                    {
                        "token_type": "supplied",
                        "symbol": "USDC",
                        "name": "USD Coin",
                        "contract_address": USDC,
                        "decimals": 6,
                        "balance": "500000000",
                        "balance_formatted": "500.0",
                        "usd_price": None,
                    },
                    {
                        "token_type": "borrowed",
                        "symbol": "WETH",
                        "name": "Wrapped Ether",
                        "contract_address": WETH,
                        "decimals": 18,
                        "balance": "100000000000000000",
                        "balance_formatted": "0.1",
                        "usd_price": 3000.0,
                    },
                ],
            },
        },
    ]
