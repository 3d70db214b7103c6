"""Moralis Web3 Data API provider."""
from .client import MoralisClient

__all__ = ["MoralisClient"]
