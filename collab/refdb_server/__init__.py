"""
RefDB Server - versioned document refs for a collaborative editor.

This package bridges durable relational storage with the live, in-memory
document handles owned by a separate collaboration service:
- Refs as stable document identities pointing at a head Snapshot
- Snapshots as stored content versions (history is never deleted)
- Lazy, idempotent lookup-or-create of collaboration handles per ref

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Editor    │────▶│  HTTP/RPC   │────▶│ DocumentService │
    │  frontend   │     │   server    │     │                 │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                              ┌──────────────────────┴──────┐
                              │                             │
                              ▼                             ▼
                        ┌─────────────┐             ┌──────────────┐
                        │VersionStore │◀────────────│HandleResolver│
                        │  (SQLite)   │ seed content└──────┬───────┘
                        └─────────────┘                    │
                                                           ▼
                                                  ┌─────────────────┐
                                                  │ Collaboration   │
                                                  │ service (ws ack)│
                                                  └─────────────────┘

Invariants:
    - A ref always has a valid head snapshot once created
    - Creating a ref and saving a snapshot are single transactions
    - Autosave overwrites the head snapshot in place, never appends
    - At most one live handle per ref (guaranteed by the collaboration service)

How to change safely:
    - Keep the two-step inserts inside one transaction
    - New HandleService backends must implement the HandleService protocol
    - Never create a handle for a ref that does not resolve in storage
"""

from ._version import __version__

__all__ = ["__version__"]
