"""Exception types raised across the valuation pipeline."""


class InvalidAddressError(ValueError):
    """Wallet address is not a 20-byte hex string."""


class ProviderError(RuntimeError):
    """Data provider returned an error status or an unusable payload."""


class ContractCallError(RuntimeError):
    """eth_call reverted, returned nothing, or returned an unexpected shape."""


class CircularBasketError(ValueError):
    """Composite tokens whose baskets depend on each other."""
