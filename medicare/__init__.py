"""Medicare Part D formulary search over CMS public-use files."""

__version__ = "0.1.0"
