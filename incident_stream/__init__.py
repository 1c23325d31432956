"""Pull-based incident stream over the Microsoft 365 Defender incidents API."""

__version__ = "0.1.0"
