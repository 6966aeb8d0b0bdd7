import time
from datetime import datetime
from pathlib import Path

import yaml

from reconcile import NationalSummary


class SnapshotError(Exception):
    pass


class SnapshotStore:
    """Archive of national summaries kept in a YAML list, newest first."""

    def __init__(self, path):
        self.path = Path(path)

    def entries(self) -> list[dict]:
        if not self.path.exists():
            return []
        with open(self.path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or []
        if not isinstance(data, list):
            raise SnapshotError(f"Snapshot archive is not a list: {self.path}")
        return data

    def save(self, title: str, summary: NationalSummary, date: str = None) -> dict:
        title = (title or '').strip()
        if not title:
            raise SnapshotError("Snapshot title is required")

        entry = {
            'id': int(time.time() * 1000),
            'title': title,
            'date': date or datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
            'shadow_prob': round(float(summary.shadow_prob), 4),
            'gap': float(summary.gap),
            'tax_loss': float(summary.tax_loss),
        }
        snapshots = [entry, *self.entries()]
        self._write(snapshots)
        return entry

    def clear(self):
        self._write([])

    def _write(self, snapshots: list[dict]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(snapshots, f, sort_keys=False, allow_unicode=True)
