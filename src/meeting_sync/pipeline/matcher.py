"""
Record matching: which origin meetings already exist in HubSpot.

Identity is recovered from two sources, in priority order:
1. The id ledger written when this tool created the meeting
2. The ``Original ID: <id>`` marker embedded in the meeting body

The resulting index is an immutable snapshot for one run.
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from ..errors import DuplicateMarkerConflict
from ..formatting import parse_origin_id
from ..ledger import IdLedger
from ..logging import get_logger
from ..models.source import SourceRecord
from ..models.target import TargetRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class MatchIndex:
    """Read-only originId -> TargetRecord snapshot plus indexing diagnostics."""

    records: Mapping[str, TargetRecord] = field(default_factory=lambda: MappingProxyType({}))
    conflicts: tuple[DuplicateMarkerConflict, ...] = ()
    ledger_hits: int = 0
    marker_hits: int = 0
    unmarked: int = 0
    marker_origin_ids: frozenset[str] = frozenset()
    folded: Mapping[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        folded: dict[str, str] = {}
        for origin_id in self.records:
            folded.setdefault(origin_id.lower(), origin_id)
        object.__setattr__(self, 'folded', MappingProxyType(folded))

    def get(self, origin_id: str) -> TargetRecord | None:
        return self.records.get(origin_id)

    def canonical_id(self, token: str) -> str | None:
        """
        Indexed origin id equal to ``token`` ignoring case.

        Filename tokens are lower-cased while markers keep whatever case
        they were written in.
        """
        if token in self.records:
            return token
        return self.folded.get(token.lower())

    def __contains__(self, origin_id: object) -> bool:
        return origin_id in self.records

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[str]:
        return iter(self.records)

    def items(self) -> Iterable[tuple[str, TargetRecord]]:
        return self.records.items()

    def marker_only_mappings(self) -> dict[str, str]:
        """Matches found by marker alone; candidates for adoption into the ledger."""
        return {oid: self.records[oid].id for oid in self.marker_origin_ids}

    def to_dict(self) -> dict[str, Any]:
        return {
            'indexed': len(self.records),
            'ledger_hits': self.ledger_hits,
            'marker_hits': self.marker_hits,
            'unmarked': self.unmarked,
            'duplicate_conflicts': len(self.conflicts),
        }


@dataclass
class Classification:
    """Origin records split by whether a target meeting exists for them."""

    to_create: list[SourceRecord] = field(default_factory=list)
    to_reconcile: list[tuple[SourceRecord, TargetRecord]] = field(default_factory=list)


class RecordMatcher:
    """
    Builds the per-run index and classifies origin records against it.

    Duplicate claims on one origin id are reported, never repaired: the
    first record seen keeps the id.
    """

    def build_index(
        self,
        targets: Iterable[TargetRecord],
        ledger: IdLedger | None = None,
    ) -> MatchIndex:
        targets = list(targets)
        by_target_id = {t.id: t for t in targets}

        index: dict[str, TargetRecord] = {}
        claimed_via: dict[str, str] = {}
        conflicts: list[DuplicateMarkerConflict] = []
        ledger_hits = 0
        marker_hits = 0
        unmarked = 0
        marker_ids: set[str] = set()

        if ledger is not None:
            for origin_id, target_id in ledger.items():
                target = by_target_id.get(target_id)
                if target is None:
                    # Deleted in HubSpot, or a dry-run artefact; fall back to markers
                    continue
                index[origin_id] = target
                claimed_via[origin_id] = 'ledger'
                ledger_hits += 1

        for target in targets:
            origin_id = parse_origin_id(target.body)
            if origin_id is None:
                unmarked += 1
                continue

            kept = index.get(origin_id)
            if kept is None:
                index[origin_id] = target
                claimed_via[origin_id] = 'marker'
                marker_ids.add(origin_id)
                marker_hits += 1
                continue

            if kept.id == target.id:
                continue

            conflict = DuplicateMarkerConflict(
                origin_id=origin_id,
                kept_id=kept.id,
                duplicate_id=target.id,
                source=claimed_via[origin_id],
            )
            conflicts.append(conflict)
            logger.warning('duplicate_marker_conflict', **conflict.context)

        snapshot = MatchIndex(
            records=MappingProxyType(index),
            conflicts=tuple(conflicts),
            ledger_hits=ledger_hits,
            marker_hits=marker_hits,
            unmarked=unmarked,
            marker_origin_ids=frozenset(marker_ids),
        )
        logger.info('match_index_built', **snapshot.to_dict())
        return snapshot

    def classify(
        self,
        sources: Iterable[SourceRecord],
        index: MatchIndex,
    ) -> Classification:
        classification = Classification()
        for source in sources:
            existing = index.get(source.origin_id)
            if existing is None:
                classification.to_create.append(source)
            else:
                classification.to_reconcile.append((source, existing))
        return classification
