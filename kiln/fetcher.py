# kiln/fetcher.py
"""
fetcher.py - batch fetch engine

Features:
- Queue of Fetchable jobs: enqueue(), empty, fetch()
- fetch() drains the whole queue on a thread pool and blocks until every
  job finished (success or failure); nothing starts building before that
- Protocol support: http(s) (urllib), file:// and plain local paths (copy)
- Per-job retries, atomic placement via a ".part" file
- Metrics counters (fetch.total / fetch.success / fetch.failed)
"""

from __future__ import annotations

import enum
import http.client
import os
import shutil
import threading
import urllib.request
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from kiln import __version__
from kiln.config import Config, get_config
from kiln.logging import get_logger

logger = get_logger("fetcher")


class FetchType(enum.Enum):
    REGULAR_FILE = "file"


@dataclass
class Fetchable:
    uri: str
    destination: str
    kind: FetchType = FetchType.REGULAR_FILE


@dataclass
class FetchResult:
    fetchable: Fetchable
    ok: bool
    attempts: int = 0
    size: int = 0
    error: Optional[str] = None


# transport signature: (uri, destination_path, timeout) -> None, raises OSError on failure
Transport = Callable[[str, str, int], None]

# -----------------------------------------------------------------------
# Fetch implementations for protocols
# -----------------------------------------------------------------------
def _fetch_http(url: str, out_path: str, timeout: int = 300):
    req = urllib.request.Request(url, headers={"User-Agent": f"kiln/{__version__}"})
    with urllib.request.urlopen(req, timeout=timeout) as resp, open(out_path, "wb") as f:
        shutil.copyfileobj(resp, f, 1024 * 1024)

def _fetch_local(path: str, out_path: str, timeout: int = 0):
    if path.startswith("file://"):
        path = path[7:]
    if not os.path.isfile(path):
        raise FileNotFoundError(f"local source not found: {path}")
    shutil.copyfile(path, out_path)

def default_transport(uri: str, out_path: str, timeout: int = 300):
    if uri.startswith("http://") or uri.startswith("https://"):
        _fetch_http(uri, out_path, timeout=timeout)
    else:
        _fetch_local(uri, out_path, timeout=timeout)

# -----------------------------------------------------------------------
# Fetcher
# -----------------------------------------------------------------------
class Fetcher:
    def __init__(self, config: Optional[Config] = None, transport: Optional[Transport] = None,
                 workers: Optional[int] = None, retries: Optional[int] = None):
        cfg = config or get_config()
        self.workers = max(1, int(workers if workers is not None else cfg.get("fetcher.workers", 4)))
        self.retries = max(0, int(retries if retries is not None else cfg.get("fetcher.retries", 3)))
        self.timeout = int(cfg.get("fetcher.timeout", 300))
        self._transport = transport or default_transport
        self._queue: List[Fetchable] = []
        self._queue_lock = threading.RLock()
        self._metrics = {"fetch.total": 0, "fetch.success": 0, "fetch.failed": 0}
        self._metrics_lock = threading.Lock()

    def enqueue(self, fetchable: Fetchable):
        with self._queue_lock:
            self._queue.append(fetchable)
        logger.debug("Enqueued %s -> %s", fetchable.uri, fetchable.destination)

    @property
    def empty(self) -> bool:
        with self._queue_lock:
            return not self._queue

    def _bump(self, key: str):
        with self._metrics_lock:
            self._metrics[key] += 1

    def _run_one(self, job: Fetchable) -> FetchResult:
        os.makedirs(os.path.dirname(job.destination) or ".", exist_ok=True)
        part = job.destination + ".part"
        result = FetchResult(fetchable=job, ok=False)
        for attempt in range(1, self.retries + 2):
            result.attempts = attempt
            self._bump("fetch.total")
            try:
                self._transport(job.uri, part, self.timeout)
                os.replace(part, job.destination)
            except (OSError, ValueError, http.client.HTTPException) as e:
                # ValueError: malformed or unsupported URI
                result.error = str(e)
                logger.warning("Fetch attempt %d for %s failed: %s", attempt, job.uri, e)
                if os.path.exists(part):
                    os.unlink(part)
                continue
            result.ok = True
            result.error = None
            result.size = os.path.getsize(job.destination)
            self._bump("fetch.success")
            logger.info("Fetched %s (%d bytes)", job.uri, result.size)
            return result
        self._bump("fetch.failed")
        logger.error("Failed to fetch %s: %s", job.uri, result.error)
        return result

    def fetch(self) -> List[FetchResult]:
        """Run every queued job; returns once the queue is drained."""
        results: List[FetchResult] = []
        while True:
            with self._queue_lock:
                batch, self._queue = self._queue, []
            if not batch:
                break
            with ThreadPoolExecutor(max_workers=min(self.workers, len(batch))) as pool:
                futures = [pool.submit(self._run_one, job) for job in batch]
                for fut in as_completed(futures):
                    results.append(fut.result())
        return results

    def get_metrics(self) -> Dict[str, int]:
        with self._metrics_lock:
            return dict(self._metrics)
