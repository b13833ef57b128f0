"""Traffic logging and dashboard aggregation service."""

__version__ = "0.1.0"
