"""Durable per-source snapshot storage."""

from thymer_inbox.storage.state_store import BucketTransaction, SnapshotBucket, StateStore

__all__ = ["BucketTransaction", "SnapshotBucket", "StateStore"]
