"""Aggregate storage accounting against a hard byte cap."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path

from .errors import LedgerError


class QuotaLedger:
    """Track the bytes stored remotely in a single ``{"usedBytes": n}`` file.

    :meth:`reserve` is a read-only check; :meth:`commit` is the only mutation
    and must only run after the remote write it accounts for succeeded.
    """

    def __init__(self, path: Path, *, cap_bytes: int) -> None:
        if cap_bytes < 0:
            raise ValueError("cap_bytes must be non-negative")
        self.path = Path(path)
        self.cap_bytes = int(cap_bytes)
        self._lock = threading.Lock()

    def used_bytes(self) -> int:
        with self._lock:
            return self._load()

    def reserve(self, candidate_bytes: int) -> bool:
        """Return ``True`` when ``candidate_bytes`` more would still fit the cap."""

        if candidate_bytes < 0:
            raise ValueError("candidate_bytes must be non-negative")
        return self.used_bytes() + candidate_bytes <= self.cap_bytes

    def commit(self, new_size: int, old_size: int = 0) -> int:
        """Replace ``old_size`` with ``new_size`` in the ledger; return the total."""

        with self._lock:
            used = self._load() - old_size + new_size
            self._save(max(used, 0))
            return max(used, 0)

    def _load(self) -> int:
        if not self.path.exists():
            return 0
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise LedgerError(f"Could not read quota file: {exc}") from exc

        used = payload.get("usedBytes") if isinstance(payload, dict) else None
        if isinstance(used, bool) or not isinstance(used, int):
            raise LedgerError("Quota file is missing an integer 'usedBytes'.")
        return used

    def _save(self, used: int) -> None:
        temporary = self.path.with_name(f"{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temporary.write_text(
                json.dumps({"usedBytes": used}, indent=2), encoding="utf-8"
            )
            os.replace(temporary, self.path)
        except OSError as exc:
            raise LedgerError(f"Could not write quota file: {exc}") from exc


__all__ = ["QuotaLedger"]
