"""Exceptions raised by the valuation engine and its adapters."""


class PortfolioLoadError(Exception):
    """The portfolio, its holdings or its snapshots could not be loaded."""


class PortfolioNotFoundError(PortfolioLoadError):
    """No portfolio exists with the requested id."""


class InvalidRangeError(ValueError):
    """A chart range token is not one of the supported selectors."""
