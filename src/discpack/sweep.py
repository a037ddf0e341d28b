"""Remove packs and tokens of servers that stopped using the service."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List

from .errors import LedgerError
from .quota import QuotaLedger
from .registry import TokenRegistry
from .storage import PackStore, pack_key

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    reclaimed_bytes: int = 0


def sweep_inactive_tokens(
    registry: TokenRegistry,
    store: PackStore,
    ledger: QuotaLedger | None,
    *,
    retention: timedelta,
    now: datetime | None = None,
) -> SweepReport:
    """Delete every token idle for longer than ``retention``, pack first.

    A token whose pack cannot be deleted stays registered so the next sweep
    retries it.
    """

    current = now or datetime.now(timezone.utc)
    report = SweepReport()

    for token, entry in registry.entries().items():
        if current - entry.last_activity_at <= retention:
            continue

        logger.info("Token is inactive, cleaning up", extra={"token": token})
        key = pack_key(token)
        try:
            size = store.size(key)
        except Exception:
            logger.warning("Could not read pack size", extra={"token": token}, exc_info=True)
            size = None

        try:
            store.delete(key)
        except Exception as exc:
            logger.warning(
                "Failed to delete pack for token: %s", exc, extra={"token": token}
            )
            report.failed.append(token)
            continue

        registry.unregister(token)
        report.removed.append(token)

        if ledger is not None and size:
            try:
                ledger.commit(0, size)
                report.reclaimed_bytes += size
            except LedgerError as exc:
                logger.error(
                    "Quota not reduced after deleting pack; manual reconciliation needed: %s",
                    exc,
                    extra={"token": token, "reconcile": True, "old_size": size},
                )

    if not report.removed and not report.failed:
        logger.info("No inactive tokens to clean")
    return report


__all__ = ["SweepReport", "sweep_inactive_tokens"]
