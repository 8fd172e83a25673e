"""
SessionGate - Session Lifecycle Supervisor

Runs many independent, long-lived messaging connections, one per account
session, behind a small HTTP API.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- session: Session model, states, errors and observer events
- auth: Credential store and auth state bridge
- transport: Boundary to the external wire protocol
- supervisor: Per-session state machine and reconnect backoff
- registry: Session id to supervisor mapping
- qr: Login challenge rendering
- storage: Redis connection
- config: Environment driven configuration
- api: HTTP request/response contracts
"""

__version__ = "1.0.0"
