"""NFL season simulation outcome aggregation."""

__version__ = "0.1.0"
