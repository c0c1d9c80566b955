"""QuoteAuth: third-party authorization server for the proposal workspace."""

__version__ = "0.4.0"
