from __future__ import annotations


class TvlError(Exception):
    """Raised when the TVL report cannot be computed."""


class RangeError(TvlError):
    pass


class GenesisError(TvlError):
    pass


class RangeFetchError(TvlError):
    pass


class PriceUnavailableError(TvlError):
    pass


class PriceFetchError(TvlError):
    pass
