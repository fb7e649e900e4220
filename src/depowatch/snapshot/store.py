"""JSON artifact with the balances seen by the last completed pass.

Loaded on startup and merged on every pass: chains that were not part of the
pass keep the data from their last scan.
"""

import json
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional

from depowatch.chains import canonical_symbol, get_chain
from depowatch.config import get_settings

logger = logging.getLogger(__name__)


def empty_report() -> dict[str, Any]:
    return {
        "scan_time": None,
        "chains_scanned": [],
        "balances": {},
        "summary": {"total_addresses": 0, "by_chain": {}},
    }


class SnapshotStore:
    """Reads and writes the balance snapshot file."""

    def __init__(self, path: Optional[str | Path] = None):
        self.path = Path(path or get_settings().snapshot_file)

    def load(self) -> dict[str, Any]:
        """Load the last report, or an empty one if missing or unreadable."""
        if not self.path.exists():
            return empty_report()
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read snapshot file {self.path}: {e}")
            return empty_report()

        report = empty_report()
        report.update(data)
        return report

    def save(self, chain_balances: dict[str, dict], chains_scanned: Iterable[str]) -> dict[str, Any]:
        """Merge a pass into the stored report and write it.

        Args:
            chain_balances: chain -> address -> {"user_id", "label", "balances"}
            chains_scanned: Chains that were part of the pass

        Returns:
            The merged report
        """
        report = self.load()
        balances = dict(report.get("balances") or {})
        balances.update(chain_balances)

        report["scan_time"] = datetime.now(timezone.utc).isoformat()
        report["chains_scanned"] = list(chains_scanned)
        report["balances"] = balances
        report["summary"] = self._summarize(balances)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(report, f, indent=2)
        os.replace(tmp_path, self.path)

        logger.info(f"Balance snapshot saved to {self.path}")
        return report

    @staticmethod
    def _summarize(balances: dict[str, dict]) -> dict[str, Any]:
        by_chain = {}
        total = 0
        for chain, addresses in balances.items():
            native = canonical_symbol(get_chain(chain).native_symbol)
            non_zero = 0
            tokens_held = 0
            for entry in addresses.values():
                amounts = entry.get("balances", {})
                if Decimal(amounts.get(native, "0")) > 0:
                    non_zero += 1
                tokens_held += sum(1 for v in amounts.values() if Decimal(v) > 0)
            by_chain[chain] = {
                "addresses": len(addresses),
                "non_zero_addresses": non_zero,
                "tokens_held": tokens_held,
            }
            total += len(addresses)
        return {"total_addresses": total, "by_chain": by_chain}
