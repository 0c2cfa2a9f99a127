"""ATH detection and email notification pipeline for top cryptocurrencies."""

__version__ = "1.0.0"
