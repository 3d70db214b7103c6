"""External data providers."""
from .moralis import MoralisClient

__all__ = ["MoralisClient"]
