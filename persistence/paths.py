from __future__ import annotations

import os
from pathlib import Path


def project_root() -> Path:
    # persistence/paths.py -> persistence -> project root
    return Path(__file__).resolve().parents[1]


def data_dir() -> Path:
    override = os.getenv("DATA_DIR", "").strip()
    if override:
        return ensure_dir(Path(override))
    return ensure_dir(project_root() / "data")


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def local_dir(data_dir: Path) -> Path:
    return ensure_dir(data_dir / "local")


def local_store_path(data_dir: Path) -> Path:
    return local_dir(data_dir) / "local_storage.json"


def remote_dir(data_dir: Path) -> Path:
    return ensure_dir(data_dir / "remote")


def remote_owners_dir(data_dir: Path) -> Path:
    return ensure_dir(remote_dir(data_dir) / "owners")
