"""Namecheap DNS provider for Protos."""

__version__ = "0.2.0"
