from __future__ import annotations

import hashlib
import json
import platform
import subprocess
import sys
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from typing import Dict, Iterable, Optional

import numpy as np


TRACKED_PACKAGES = (
    "numpy",
    "pandas",
    "geopandas",
    "shapely",
    "libpysal",
    "esda",
    "spreg",
    "spopt",
    "statsmodels",
    "linearmodels",
    "scikit-learn",
    "matplotlib",
)


def _json_default(value):
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (np.floating,)):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, Path):
        return str(value)
    return str(value)


def write_json(path: Path, payload: dict) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True, default=_json_default), encoding="utf-8")


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    h = hashlib.sha256()
    with Path(path).open("rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def resolve_git_commit(root: Path) -> str:
    try:
        proc = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=root,
            check=True,
            capture_output=True,
            text=True,
        )
        return proc.stdout.strip() or "no_vcs"
    except (OSError, subprocess.CalledProcessError):
        return "no_vcs"


def package_versions(packages: Iterable[str] = TRACKED_PACKAGES) -> Dict[str, Optional[str]]:
    out: Dict[str, Optional[str]] = {}
    for pkg in packages:
        try:
            out[pkg] = metadata.version(pkg)
        except metadata.PackageNotFoundError:
            out[pkg] = None
    return out


def input_fingerprints(paths: Dict[str, Path]) -> Dict[str, dict]:
    """Record path and content hash for each named input file."""

    out = {}
    for name, path in paths.items():
        path = Path(path)
        out[name] = {
            "path": str(path),
            "sha256": sha256_file(path) if path.is_file() else None,
        }
    return out


def runtime_metadata(root: Path) -> dict:
    return {
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "python_version": sys.version,
        "platform": platform.platform(),
        "argv": sys.argv,
        "packages": package_versions(),
        "git_commit": resolve_git_commit(root),
    }
