"""hwfix: hardware fix orchestrator for Samsung Galaxy Book laptops on Linux."""

__version__ = "0.1.0"
