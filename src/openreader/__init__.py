"""Open-access book resolver: multi-source search, readability checks and a token-gated proxy."""

__version__ = "0.1.0"
