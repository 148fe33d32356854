"""RentFlow settlement API: lease activation payments over a USDC rail."""

__version__ = "0.3.0"
