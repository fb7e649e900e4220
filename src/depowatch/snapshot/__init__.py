"""Balance snapshot engine and its JSON artifact."""

from depowatch.snapshot.engine import BalanceSnapshotEngine, ChainSnapshotReport
from depowatch.snapshot.store import SnapshotStore

__all__ = ["BalanceSnapshotEngine", "ChainSnapshotReport", "SnapshotStore"]
