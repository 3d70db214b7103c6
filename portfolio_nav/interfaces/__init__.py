"""Protocol interfaces for the portfolio valuation pipeline."""
from .chain import ContractReader
from .data_provider import DataProvider
from .price_oracle import PriceOracle

__all__ = ["ContractReader", "DataProvider", "PriceOracle"]
