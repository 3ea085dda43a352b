# kiln/upstream.py
"""
upstream.py - content-addressed upstream cache and the fetch-upstreams step

Layout under the cache root:
  staging/<hash>                              partially verified downloads
  fetched/<hash[:5]>/<hash[-5:]>/<hash>       verified sources, never evicted here

fetch_upstreams() skips sources already cached, enqueues the others, waits
for the whole batch, promotes what arrived and then shares every plain
source into the build's source directory under its rename or URI basename.
Any source that could not be fetched or verified fails the step.
"""

from __future__ import annotations

import hashlib
import os
import shutil
from typing import Dict, List, Optional

from kiln.config import Config, get_config
from kiln.errors import FetchError
from kiln.fetcher import Fetchable, Fetcher, FetchType
from kiln.logging import get_logger
from kiln.recipe import Upstream

logger = get_logger("upstream")


def _sha256_of_file(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


class UpstreamCache:
    def __init__(self, root: Optional[str] = None, config: Optional[Config] = None):
        cfg = config or get_config()
        self.root = os.path.abspath(root or cfg.get("upstreams.cache_dir"))
        self.staging_dir = os.path.join(self.root, "staging")
        self.fetched_dir = os.path.join(self.root, "fetched")

    def construct_dirs(self):
        os.makedirs(self.staging_dir, exist_ok=True)
        os.makedirs(self.fetched_dir, exist_ok=True)

    def _check_hash(self, upstream: Upstream) -> str:
        h = upstream.hash.strip().lower()
        if len(h) < 5 or os.sep in h or h.startswith("."):
            raise FetchError(f"Invalid hash for upstream {upstream.uri}: {upstream.hash!r}")
        return h

    def contains(self, upstream: Upstream) -> bool:
        return os.path.isfile(self.final_path(upstream))

    def staging_path(self, upstream: Upstream) -> str:
        return os.path.join(self.staging_dir, self._check_hash(upstream))

    def final_path(self, upstream: Upstream) -> str:
        h = self._check_hash(upstream)
        return os.path.join(self.fetched_dir, h[:5], h[-5:], h)

    def promote(self, upstream: Upstream) -> str:
        """Verify the staged download and move it into the fetched tree."""
        staged = self.staging_path(upstream)
        if not os.path.isfile(staged):
            raise FetchError(f"Nothing staged for {upstream.uri}")
        got = _sha256_of_file(staged)
        if got != upstream.hash.strip().lower():
            os.unlink(staged)
            raise FetchError(f"Checksum mismatch for {upstream.uri}: expected {upstream.hash}, got {got}",
                             {upstream.uri: "checksum mismatch"})
        final = self.final_path(upstream)
        os.makedirs(os.path.dirname(final), exist_ok=True)
        os.replace(staged, final)
        return final

    def share(self, upstream: Upstream, destination: str) -> str:
        """Place a cached source at destination (hard link, copy across devices)."""
        source = self.final_path(upstream)
        if not os.path.isfile(source):
            raise FetchError(f"Upstream {upstream.uri} is not cached")
        os.makedirs(os.path.dirname(destination) or ".", exist_ok=True)
        if os.path.lexists(destination):
            os.unlink(destination)
        try:
            os.link(source, destination)
        except OSError as e:
            logger.debug("Hard link %s -> %s failed (%s), copying", source, destination, e)
            shutil.copy2(source, destination)
        return destination


def fetch_upstreams(context, cache: UpstreamCache, fetcher: Fetcher) -> Dict[str, object]:
    """Fetch and cache every plain upstream, then share them into context.source_dir."""
    cache.construct_dirs()
    plains = context.recipe.plain_upstreams()
    for u in context.recipe.upstreams:
        if u.type != "plain":
            logger.warning("Skipping unsupported %s upstream %s", u.type, u.uri)

    pending: Dict[str, Upstream] = {}
    skipped: List[str] = []
    for u in plains:
        if cache.contains(u):
            logger.info("Skipped download: %s", u.uri)
            skipped.append(u.uri)
            continue
        staging = cache.staging_path(u)
        if staging in pending:
            continue
        pending[staging] = u
        fetcher.enqueue(Fetchable(u.uri, staging, FetchType.REGULAR_FILE))

    failures: Dict[str, str] = {}
    while not fetcher.empty:
        for res in fetcher.fetch():
            u = pending[res.fetchable.destination]
            if not res.ok:
                failures[u.uri] = res.error or "fetch failed"
                continue
            try:
                cache.promote(u)
            except FetchError as e:
                failures[u.uri] = str(e)

    if failures:
        raise FetchError("Failed to fetch upstreams: " + ", ".join(sorted(failures)), failures)

    shared: List[str] = []
    for u in plains:
        shared.append(cache.share(u, os.path.join(context.source_dir, u.filename)))
    logger.info("Prepared %d sources in %s", len(shared), context.source_dir)
    return {"ok": True, "fetched": [u.uri for u in pending.values()], "skipped": skipped, "sources": shared}
