"""Configuration loading: YAML file, ${VAR} interpolation, validated frozen dataclasses."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .registry import COMPOSITE_TYPES, order_composites

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")

# Token names/symbols carrying these are airdrop-scam bait.
DEFAULT_SPAM_PATTERNS: tuple[str, ...] = (
    r"t\.me/",
    r"https?://",
    r"\.(com|io|org|net|xyz|app)\b",
    r"\bvisit\b",
    r"\bclaim\b",
)

REDIRECT_MODES = ("always", "fallback")

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValuationConfig:
    dust_threshold_usd: float = 1.0
    risk_free_rate: float = 0.045
    price_batch_size: int = 20
    price_batch_delay: float = 1.1
    basket_call_delay: float = 0.1


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int = 0
    name: str = ""
    provider_chain: str = ""
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30


@dataclass(frozen=True)
class ProviderConfig:
    api_url: str = "https://deep-index.moralis.io/api/v2.2"
    api_key: str = ""
    timeout: int = 30


@dataclass(frozen=True)
class PriceRedirectConfig:
    """Price ``address`` off ``lookup_address`` on the same chain.

    ``always`` replaces an unreliable market price before merging;
    ``fallback`` only prices holdings still unpriced after NAV resolution.
    """

    chain_id: int
    address: str
    lookup_address: str
    note: str = ""
    mode: str = "always"


@dataclass(frozen=True)
class ClassifierConfig:
    spam_symbols: dict[int, frozenset[str]] = field(default_factory=dict)
    spam_patterns: tuple[re.Pattern[str], ...] = ()
    price_redirects: tuple[PriceRedirectConfig, ...] = ()


@dataclass(frozen=True)
class CompositeTokenConfig:
    chain_id: int
    address: str
    symbol: str = "UNKNOWN"
    type: str | None = None
    depends_on: tuple[str, ...] = ()


@dataclass(frozen=True)
class AppConfig:
    valuation: ValuationConfig = field(default_factory=ValuationConfig)
    chains: dict[str, ChainConfig] = field(default_factory=dict)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    # protocol name -> chain id -> receipt token addresses
    protocol_tokens: dict[str, dict[int, tuple[str, ...]]] = field(default_factory=dict)
    composite_tokens: tuple[CompositeTokenConfig, ...] = ()

    def chain_by_id(self, chain_id: int) -> ChainConfig | None:
        for chain in self.chains.values():
            if chain.chain_id == chain_id:
                return chain
        return None


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_valuation(raw: dict[str, Any]) -> ValuationConfig:
    return ValuationConfig(
        dust_threshold_usd=float(raw.get("dust_threshold_usd", 1.0)),
        risk_free_rate=float(raw.get("risk_free_rate", 0.045)),
        price_batch_size=int(raw.get("price_batch_size", 20)),
        price_batch_delay=float(raw.get("price_batch_delay", 1.1)),
        basket_call_delay=float(raw.get("basket_call_delay", 0.1)),
    )


def _build_chains(raw: dict[str, Any]) -> dict[str, ChainConfig]:
    chains: dict[str, ChainConfig] = {}
    for name, cfg in raw.items():
        chains[name] = ChainConfig(
            chain_id=int(cfg.get("chain_id", 0)),
            name=cfg.get("name", name),
            provider_chain=cfg.get("provider_chain", name),
            # Unset ${VAR} endpoints interpolate to "" and are dropped.
            rpc_endpoints=tuple(e for e in cfg.get("rpc_endpoints", []) if e),
            rpc_timeout=int(cfg.get("rpc_timeout", 30)),
        )
    return chains


def _build_provider(raw: dict[str, Any]) -> ProviderConfig:
    return ProviderConfig(
        api_url=raw.get("api_url", ProviderConfig.api_url).rstrip("/"),
        api_key=raw.get("api_key", ""),
        timeout=int(raw.get("timeout", 30)),
    )


def _build_classifier(raw: dict[str, Any]) -> ClassifierConfig:
    spam_symbols = {
        int(chain_id): frozenset(symbols or [])
        for chain_id, symbols in raw.get("spam_symbols", {}).items()
    }
    patterns = raw.get("spam_patterns") or DEFAULT_SPAM_PATTERNS
    redirects = tuple(
        PriceRedirectConfig(
            chain_id=int(r.get("chain_id", 0)),
            address=str(r.get("address", "")).lower(),
            lookup_address=str(r.get("lookup_address", "")).lower(),
            note=r.get("note", ""),
            mode=r.get("mode", "always"),
        )
        for r in raw.get("price_redirects", [])
    )
    return ClassifierConfig(
        spam_symbols=spam_symbols,
        spam_patterns=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
        price_redirects=redirects,
    )


def _build_protocol_tokens(
    raw: dict[str, Any],
) -> dict[str, dict[int, tuple[str, ...]]]:
    return {
        protocol: {
            int(chain_id): tuple(a.lower() for a in addresses or [])
            for chain_id, addresses in (chains or {}).items()
        }
        for protocol, chains in raw.items()
    }


def _build_composites(raw: list[dict[str, Any]]) -> list[CompositeTokenConfig]:
    return [
        CompositeTokenConfig(
            chain_id=int(c.get("chain_id", 0)),
            address=str(c.get("address", "")).lower(),
            symbol=c.get("symbol", "UNKNOWN"),
            type=c.get("type"),
            depends_on=tuple(d.lower() for d in c.get("depends_on", [])),
        )
        for c in raw
    ]


def parse_env_composites(value: str) -> list[CompositeTokenConfig]:
    """Parse ``chainId:symbol:address[:type],...`` (the COMPOSITE_TOKENS env var)."""
    composites: list[CompositeTokenConfig] = []
    for entry in (part.strip() for part in value.split(",")):
        if not entry:
            continue
        parts = entry.split(":")
        if len(parts) < 3 or not all(parts[:3]):
            logger.warning("Ignoring malformed composite token entry '%s'", entry)
            continue
        composites.append(
            CompositeTokenConfig(
                chain_id=int(parts[0]),
                symbol=parts[1],
                address=parts[2].lower(),
                type=parts[3] if len(parts) > 3 and parts[3] else None,
            )
        )
    return composites


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    composites = _build_composites(raw.get("composite_tokens", []))
    composites.extend(parse_env_composites(os.environ.get("COMPOSITE_TOKENS", "")))

    cfg = AppConfig(
        valuation=_build_valuation(raw.get("valuation", {})),
        chains=_build_chains(raw.get("chains", {})),
        provider=_build_provider(raw.get("provider", {})),
        classifier=_build_classifier(raw.get("classifier", {})),
        protocol_tokens=_build_protocol_tokens(raw.get("protocol_tokens", {})),
        composite_tokens=tuple(composites),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.chains:
        raise ValueError("At least one chain must be configured")

    seen_ids: set[int] = set()
    for name, chain in cfg.chains.items():
        if chain.chain_id <= 0:
            raise ValueError(f"Chain '{name}' has no chain_id")
        if chain.chain_id in seen_ids:
            raise ValueError(f"Chain id {chain.chain_id} is configured twice")
        seen_ids.add(chain.chain_id)

    if cfg.valuation.price_batch_size <= 0:
        raise ValueError("price_batch_size must be positive")

    for redirect in cfg.classifier.price_redirects:
        if redirect.mode not in REDIRECT_MODES:
            raise ValueError(
                f"Price redirect for {redirect.address} has unknown mode '{redirect.mode}'"
            )
        if not _ADDRESS_RE.fullmatch(redirect.address) or not _ADDRESS_RE.fullmatch(
            redirect.lookup_address
        ):
            raise ValueError(f"Price redirect for '{redirect.address}' has a bad address")

    for token in cfg.composite_tokens:
        if not _ADDRESS_RE.fullmatch(token.address):
            raise ValueError(f"Composite '{token.symbol}' has invalid address")
        if token.type is not None and token.type not in COMPOSITE_TYPES:
            raise ValueError(
                f"Composite '{token.symbol}' has unknown type '{token.type}'"
            )
        if token.chain_id not in seen_ids:
            raise ValueError(
                f"Composite '{token.symbol}' references unknown chain {token.chain_id}"
            )

    # Raises CircularBasketError (a ValueError) on cycles / unknown deps.
    order_composites(cfg.composite_tokens)
