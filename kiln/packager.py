# kiln/packager.py
"""
packager.py - emit collected files as compressed package archives

Features:
- One archive per output package that received at least one file
- Archive name: <package>-<version>-<release>-<platform>.tar.<zst|gz|xz>
- MANIFEST.json inside every archive (per-file sha256/size, sorted by path)
- zstd via the zstandard binding, gz/xz via tarfile
"""

from __future__ import annotations

import hashlib
import io
import json
import os
import shutil
import tarfile
import tempfile
import time
from typing import Any, Dict, List, Optional

import zstandard as zstd

from kiln.collector import BuildCollector, CollectedFile
from kiln.config import COMPRESSIONS
from kiln.errors import BuildError
from kiln.logging import get_logger

logger = get_logger("packager")

# -----------------------------
# Utilities
# -----------------------------
def _sha256_file(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def _ensure_dir(path: str):
    os.makedirs(path, exist_ok=True)


def archive_name(package: str, version: str, release: int, platform: str, compression: str) -> str:
    return f"{package}-{version}-{release}-{platform}.tar.{compression}"

# -----------------------------
# Manifest
# -----------------------------
def generate_manifest(package: str, context, files: List[CollectedFile]) -> Dict[str, Any]:
    recipe = context.recipe
    manifest: Dict[str, Any] = {
        "name": package,
        "source": recipe.name,
        "version": recipe.version,
        "release": recipe.release,
        "summary": recipe.package_summary(package),
        "platform": context.platform.name,
        "built_at": int(time.time()),
        "files": [],
    }
    for f in files:
        full = f.full_path
        if os.path.islink(full):
            entry = {"path": f.path, "link": os.readlink(full)}
        else:
            entry = {"path": f.path, "sha256": _sha256_file(full), "size": os.path.getsize(full)}
        manifest["files"].append(entry)
    manifest["files"].sort(key=lambda x: x["path"])
    return manifest

# -----------------------------
# Archive writing
# -----------------------------
def _write_members(tar: tarfile.TarFile, files: List[CollectedFile], manifest: Dict[str, Any]):
    for f in sorted(files, key=lambda x: x.path):
        tar.add(f.full_path, arcname=f.path.lstrip("/"), recursive=False)
    data = json.dumps(manifest, indent=2, ensure_ascii=False).encode("utf-8")
    info = tarfile.TarInfo("MANIFEST.json")
    info.size = len(data)
    info.mtime = manifest["built_at"]
    tar.addfile(info, io.BytesIO(data))


def write_archive(out_path: str, files: List[CollectedFile], manifest: Dict[str, Any],
                  compression: str = "zst", level: int = 3):
    tmp = out_path + ".tmp"
    try:
        if compression == "zst":
            cctx = zstd.ZstdCompressor(level=level)
            with open(tmp, "wb") as outf, cctx.stream_writer(outf) as writer:
                with tarfile.open(fileobj=writer, mode="w|") as tar:
                    _write_members(tar, files, manifest)
        elif compression in ("gz", "xz"):
            with tarfile.open(tmp, f"w:{compression}") as tar:
                _write_members(tar, files, manifest)
        else:
            raise BuildError(f"Unsupported compression method: {compression}")
        os.replace(tmp, out_path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


def _stage_archives(context, collector: BuildCollector, staging: str,
                    compression: str, level: int) -> List[Dict[str, Any]]:
    recipe = context.recipe
    staged: List[Dict[str, Any]] = []
    for package, files in sorted(collector.packages().items()):
        if not files:
            continue
        manifest = generate_manifest(package, context, files)
        name = archive_name(package, recipe.version, recipe.release, context.platform.name, compression)
        path = os.path.join(staging, name)
        try:
            write_archive(path, files, manifest, compression=compression, level=level)
        except (tarfile.TarError, zstd.ZstdError) as e:
            raise BuildError(f"Cannot write package {name}: {e}") from e
        staged.append({"package": package, "name": name, "files": len(files),
                       "size": os.path.getsize(path)})
    return staged


def emit_packages(context, collector: BuildCollector, output_dir: Optional[str] = None) -> Dict[str, Any]:
    """
    Write one archive per non-empty package into the output directory.
    Archives are built in a staging directory first and only moved into
    place once every package was written; on failure nothing is left behind.
    """
    cfg = context.config
    compression = str(cfg.get("packaging.compression", "zst")).lower()
    if compression not in COMPRESSIONS:
        raise BuildError(f"Unsupported compression method: {compression}")
    level = int(cfg.get("packaging.level", 3))
    out_dir = os.path.abspath(output_dir or context.output_directory)
    _ensure_dir(out_dir)

    staging = tempfile.mkdtemp(prefix=".kiln-emit-", dir=out_dir)
    emitted: List[Dict[str, Any]] = []
    try:
        staged = _stage_archives(context, collector, staging, compression, level)
        for entry in staged:
            name = entry.pop("name")
            path = os.path.join(out_dir, name)
            os.replace(os.path.join(staging, name), path)
            entry["path"] = path
            emitted.append(entry)
            logger.info("Emitted %s (%d files)", path, entry["files"])
    except BaseException:
        for entry in emitted:
            if os.path.exists(entry["path"]):
                os.unlink(entry["path"])
        raise
    finally:
        shutil.rmtree(staging, ignore_errors=True)
    if not emitted:
        logger.warning("No files were collected, nothing to emit")
    return {"ok": True, "packages": emitted}
