"""
Registry Module - Black Box Interface

Purpose: Process-wide table of session supervisors
Interface: create(), get(), list(), reset(), send(), restore(), shutdown()
Hidden: Supervisor table, per-id locking

Guarantees at most one live supervisor per session id.
"""

from .registry import SessionRegistry

__all__ = ["SessionRegistry"]
