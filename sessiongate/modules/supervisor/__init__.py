"""
Supervisor Module - Black Box Interface

Purpose: Per-session connection lifecycle and reconnect policy
Interface: ConnectionSupervisor.start()/stop()/send(), BackoffPolicy, RestartScheduler
Hidden: Event ordering, handle hand-over, restart timers
"""

from .backoff import BackoffPolicy, RestartScheduler
from .supervisor import MAX_RETRIES_EXCEEDED, PERSISTENCE_FAILURE, ConnectionSupervisor

__all__ = [
    "BackoffPolicy",
    "ConnectionSupervisor",
    "MAX_RETRIES_EXCEEDED",
    "PERSISTENCE_FAILURE",
    "RestartScheduler",
]
