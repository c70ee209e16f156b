"""Async orchestration client for a tunnel-exposed video search backend."""

__version__ = "0.1.0"
