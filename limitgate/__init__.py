"""LimitGate - Redis-backed per-key rate limiting service."""

__version__ = "0.1.0"
