"""
In-memory store of emitted opportunity records.

The execution stage reads from here and removes a record once its trade
resolves. Records older than the retention window are pruned.
"""

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from pool_arbitrage.utils import get_current_timestamp, get_logger

from .types import OpportunityRecord

logger = get_logger(__name__)

OUTCOMES = ("successful", "skip", "fail")


class OpportunityBook:
    """Records keyed by id, in arrival order."""

    def __init__(self, max_records: Optional[int] = None):
        self.max_records = max_records
        self._records: "OrderedDict[str, OpportunityRecord]" = OrderedDict()
        self.outcomes: Dict[str, int] = {outcome: 0 for outcome in OUTCOMES}
        # route_key -> latest record id; entries may point at removed records
        self._route_ids: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def get(self, record_id: str) -> Optional[OpportunityRecord]:
        return self._records.get(record_id)

    def add(self, records: Iterable[OpportunityRecord]) -> int:
        """Add records. Returns how many were new."""
        added = 0
        for record in records:
            if record.id in self._records:
                continue
            self._records[record.id] = record
            self._route_ids[record.route_key] = record.id
            added += 1
        if self.max_records is not None:
            while len(self._records) > self.max_records:
                self._records.popitem(last=False)
        return added

    def upsert(self, records: Iterable[OpportunityRecord]) -> int:
        """
        Add records, replacing any stored record for the same route.

        Rescans and swap-led recomputes re-emit live routes; the book keeps
        only the latest estimate per route.

        Returns:
            How many routes were not in the book before
        """
        new_routes = 0
        for record in records:
            previous = self._route_ids.get(record.route_key)
            if previous is not None and previous in self._records:
                if previous == record.id:
                    continue
                del self._records[previous]
            else:
                new_routes += 1
            self.add([record])
        return new_routes

    def remove(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    def resolve(self, record_id: str, outcome: str) -> bool:
        """
        Remove a record after its trade resolved.

        Args:
            record_id: Record id
            outcome: "successful", "skip" or "fail"

        Returns:
            True if the record was present
        """
        if outcome not in OUTCOMES:
            raise ValueError(f"Unknown trade outcome '{outcome}' (expected one of {OUTCOMES})")
        self.outcomes[outcome] += 1
        removed = self.remove(record_id)
        if removed:
            logger.info(f"🧹 Removed opportunity {record_id} after {outcome} trade")
        else:
            logger.debug(f"No opportunity {record_id} to remove after {outcome} trade")
        return removed

    def prune(self, max_age_seconds: float, now: Optional[float] = None) -> int:
        """Drop records older than max_age_seconds. Returns how many were dropped."""
        cutoff = (now if now is not None else get_current_timestamp()) - max_age_seconds
        stale = [rid for rid, r in self._records.items() if r.timestamp < cutoff]
        for rid in stale:
            del self._records[rid]
        if stale:
            logger.info(f"🧹 Pruned {len(stale)} opportunities, {len(self._records)} remain")
        return len(stale)

    def top(self, n: int = 10, kind: Optional[str] = None) -> List[OpportunityRecord]:
        """Most profitable records, optionally of one kind."""
        records = [r for r in self._records.values() if kind is None or r.kind == kind]
        return sorted(records, key=lambda r: r.est_profit_usd, reverse=True)[:n]
