"""
Persistent origin id -> target id ledger.

Written at the moment a target meeting is created, read by the matcher at
the start of every run. Records created before the ledger existed are still
found through their body marker and are adopted into the ledger on the
next apply run.

The file is rewritten atomically (temp file + os.replace) so an interrupted
run leaves either the previous or the new version, never a torn one.
"""

import json
import os
import tempfile
from collections.abc import Iterator, Mapping
from pathlib import Path

from .errors import MatchingError
from .logging import get_logger

logger = get_logger(__name__)

LEDGER_VERSION = 1


class IdLedger:
    """originId -> targetId map backed by a JSON file."""

    def __init__(
        self,
        path: str | Path | None = None,
        entries: Mapping[str, str] | None = None,
        read_only: bool = False,
    ):
        self.path = Path(path) if path else None
        self.read_only = read_only
        self._entries: dict[str, str] = dict(entries or {})

    @classmethod
    def load(cls, path: str | Path | None, read_only: bool = False) -> 'IdLedger':
        """
        Load a ledger file; a missing file is an empty ledger.

        Raises:
            MatchingError: The file exists but is not a valid ledger
        """
        if not path or not Path(path).exists():
            return cls(path, read_only=read_only)

        try:
            payload = json.loads(Path(path).read_text(encoding='utf-8'))
            entries = payload['entries']
            if not isinstance(entries, dict):
                raise TypeError('entries must be an object')
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise MatchingError(
                f"Unreadable id ledger: {e}",
                context={'path': str(path)},
            ) from e

        logger.info('id_ledger_loaded', path=str(path), entries=len(entries))
        return cls(path, {str(k): str(v) for k, v in entries.items()}, read_only=read_only)

    def get(self, origin_id: str) -> str | None:
        return self._entries.get(origin_id)

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(self._entries.items())

    def __contains__(self, origin_id: object) -> bool:
        return origin_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, origin_id: str, target_id: str) -> None:
        """Store one mapping and persist immediately."""
        if self._entries.get(origin_id) == target_id:
            return
        self._entries[origin_id] = target_id
        self._persist()

    def merge(self, mapping: Mapping[str, str]) -> int:
        """Add mappings not yet present. Existing entries win. Returns count added."""
        added = 0
        for origin_id, target_id in mapping.items():
            if origin_id not in self._entries:
                self._entries[origin_id] = target_id
                added += 1
        if added:
            self._persist()
        return added

    def _persist(self) -> None:
        if self.path is None or self.read_only:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {'version': LEDGER_VERSION, 'entries': self._entries}
        fd, tmp_name = tempfile.mkstemp(
            prefix=f'.{self.path.name}.', suffix='.tmp', dir=self.path.parent
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as fh:
                json.dump(payload, fh, indent=2, sort_keys=True)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
