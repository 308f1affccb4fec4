"""
Row-count bookkeeping for tables being processed.

Counters are written by the single progress consumer and read from
whichever thread reports status, so the collection guards both with a lock.
"""

from __future__ import annotations


import threading
from dataclasses import dataclass, field
from typing import Iterator


@dataclass
class PartitionRowCounter:
    partition_id: str
    row_count: int = 0


@dataclass
class ProcessingTable:
    """A table requested for processing, identified on the store by ``table_id``."""

    name: str
    table_id: str | None = None
    partitions: list[PartitionRowCounter] = field(default_factory=list)

    def find_partition(self, partition_id: str) -> PartitionRowCounter | None:
        for partition in self.partitions:
            if partition.partition_id == partition_id:
                return partition
        return None

    def set_partition_rows(self, partition_id: str, row_count: int) -> None:
        partition = self.find_partition(partition_id)
        if partition is None:
            partition = PartitionRowCounter(partition_id)
            self.partitions.append(partition)
        partition.row_count = row_count

    def get_row_count(self) -> int:
        return sum(p.row_count for p in self.partitions)


class ProcessingTableCollection:
    """Ordered, lock-guarded set of tables being processed."""

    def __init__(self, tables: list[ProcessingTable] | None = None) -> None:
        self._lock = threading.RLock()
        self._tables: list[ProcessingTable] = list(tables or [])

    @classmethod
    def from_names(cls, names: list[str]) -> "ProcessingTableCollection":
        return cls([ProcessingTable(name=name) for name in names])

    def __len__(self) -> int:
        with self._lock:
            return len(self._tables)

    def __iter__(self) -> Iterator[ProcessingTable]:
        with self._lock:
            return iter(list(self._tables))

    def names(self) -> list[str]:
        with self._lock:
            return [t.name for t in self._tables]

    def assign_ids(self, table_ids: dict[str, str]) -> None:
        """Record the store-side id of each table after the model is applied."""
        with self._lock:
            for table in self._tables:
                table.table_id = table_ids.get(table.name, table.table_id)

    def contains_id(self, table_id: str) -> bool:
        return self.find_by_id(table_id) is not None

    def find_by_id(self, table_id: str) -> ProcessingTable | None:
        with self._lock:
            for table in self._tables:
                if table.table_id == table_id:
                    return table
            return None

    def record_progress(self, table_id: str, partition_id: str, row_count: int) -> ProcessingTable | None:
        """
        Set the cumulative row count of one partition.

        Returns:
            The table the partition belongs to, or None if the table is not
            being processed.
        """
        with self._lock:
            table = self.find_by_id(table_id)
            if table is not None:
                table.set_partition_rows(partition_id, row_count)
            return table

    def row_counts(self) -> dict[str, int]:
        with self._lock:
            return {t.name: t.get_row_count() for t in self._tables}
