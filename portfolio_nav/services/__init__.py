"""Service modules"""
from .classifier import TokenClassifier
from .nav import NavResolver
from .valuation import DeFiSummary, PortfolioValuator

__all__ = ["TokenClassifier", "NavResolver", "DeFiSummary", "PortfolioValuator"]
