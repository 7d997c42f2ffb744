"""Resend counter stores - process-local and Redis implementations."""

from .memory import InMemoryResendCounterStore
from .redis import RedisResendCounterStore

__all__ = ["InMemoryResendCounterStore", "RedisResendCounterStore"]
