"""Signal feed — reconciles pushed and polled trading signals into a tiered view."""

__version__ = "0.1.0"
