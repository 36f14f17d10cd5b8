"""Operator orchestration engine: graphs of registered operators sharing a per-run container."""

__version__ = "0.1.0"