"""
Store module for RefDB - durable refs and snapshots.

This module handles:
- The ref/snapshot data model
- Ref creation, autosave-in-place and snapshot-preserving save
- Head content reads used to seed collaboration handles

Invariants:
    - A ref never exists without a valid head snapshot
    - Two-step writes commit together or not at all
    - Snapshot history is append-only

How to change safely:
    - Test atomicity with failure injection between the two write steps
    - Keep document content opaque (JSON in, JSON out)
"""

from .models import DocumentContent, Ref, Snapshot, new_ref_id
from .version_store import VersionStore

__all__ = [
    "DocumentContent",
    "Ref",
    "Snapshot",
    "new_ref_id",
    "VersionStore",
]
