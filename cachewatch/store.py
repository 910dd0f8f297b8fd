"""
cachewatch - Result persistence
Append-only JSON lines files for probe results and token usage
"""
import asyncio
import json
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .core import ProbeResult, UsageSample

logger = logging.getLogger(__name__)


class JsonlResultStore:
    """Stores one JSON object per line under data_dir.

    Writes run in a worker thread and are bounded by store_timeout; a slow
    or failing disk is logged and never reaches the scheduler loop.
    """

    def __init__(self, data_dir: Union[str, Path], store_timeout: float = 10.0):
        self.data_dir = Path(data_dir)
        self.results_file = self.data_dir / "results.jsonl"
        self.usage_file = self.data_dir / "usage.jsonl"
        self.store_timeout = store_timeout
        self._lock = threading.Lock()

    def _append(self, path: Path, entry: Dict[str, Any]):
        with self._lock:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")

    async def _write(self, path: Path, entry: Dict[str, Any], what: str) -> bool:
        try:
            await asyncio.wait_for(asyncio.to_thread(self._append, path, entry), self.store_timeout)
        except asyncio.TimeoutError:
            logger.error("Store write of %s timed out after %.0fs", what, self.store_timeout)
            return False
        except OSError as e:
            logger.error("Store write of %s failed: %s", what, e)
            return False
        except Exception:
            logger.exception("Store write of %s failed", what)
            return False
        return True

    async def persist(self, result: ProbeResult, display_name: str) -> bool:
        entry = result.to_dict()
        entry["display_name"] = display_name
        return await self._write(self.results_file, entry, f"{result.model_id}/{result.probe_name}")

    async def record_usage(self, model_id: str, usage: UsageSample) -> bool:
        entry = {"model_id": model_id, "timestamp": datetime.now().isoformat(), **usage.to_dict()}
        return await self._write(self.usage_file, entry, f"{model_id} usage")

    @staticmethod
    def _read(path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        rows = []
        with open(path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    rows.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed line %d in %s", line_no, path)
        return rows

    def load_results(self) -> List[Dict[str, Any]]:
        return self._read(self.results_file)

    def load_usage(self) -> List[Dict[str, Any]]:
        return self._read(self.usage_file)

    def _prune(self, path: Path, cutoff: datetime) -> int:
        rows = self._read(path)
        kept = []
        for row in rows:
            try:
                stamp = datetime.fromisoformat(row.get("timestamp", ""))
            except (TypeError, ValueError):
                kept.append(row)
                continue
            if stamp >= cutoff:
                kept.append(row)
        removed = len(rows) - len(kept)
        if removed:
            tmp = path.with_suffix(".jsonl.tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                for row in kept:
                    f.write(json.dumps(row, ensure_ascii=False, default=str) + "\n")
            tmp.replace(path)
        return removed

    def cleanup(self, retention_days: int = 30, now: Optional[datetime] = None) -> Tuple[int, int]:
        """Drop rows older than retention_days; returns (results, usage) removed"""
        cutoff = (now or datetime.now()) - timedelta(days=retention_days)
        with self._lock:
            results_removed = self._prune(self.results_file, cutoff)
            usage_removed = self._prune(self.usage_file, cutoff)
        if results_removed or usage_removed:
            logger.info(
                "Cleanup: deleted %d test results, %d usage records older than %d days",
                results_removed, usage_removed, retention_days,
            )
        return results_removed, usage_removed
