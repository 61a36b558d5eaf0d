"""simplechat: a small multi-client text chat server and console client."""

__version__ = "0.1.0"
