"""AI bridge: stdio bridge between an IDE panel and AI coding-agent SDKs."""

__version__ = "0.1.0"
