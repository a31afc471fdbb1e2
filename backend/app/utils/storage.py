from __future__ import annotations
import os
import re
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

# Default folder: backend/var/storage (override with STORAGE_DIR)
_DEFAULT_DIR = Path(__file__).resolve().parents[2] / "var" / "storage"
STORAGE_DIR = Path(os.getenv("STORAGE_DIR", str(_DEFAULT_DIR)))

MAX_ANSWER_FILE_BYTES = 10 * 1024 * 1024
MAX_FULFILLMENT_FILE_BYTES = 15 * 1024 * 1024

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class Upload:
    """An uploaded file, already read into memory."""
    filename: Optional[str]
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


class FileTooLargeError(ValueError):
    def __init__(self, limit: int):
        super().__init__(f"File may not be greater than {limit // (1024 * 1024)} MB.")
        self.limit = limit


def _safe_name(name: Optional[str]) -> str:
    base = os.path.basename(name or "") or "upload"
    return _UNSAFE.sub("_", base)[:200]

def _root() -> Path:
    # read at call time so tests can point STORAGE_DIR elsewhere
    return Path(os.getenv("STORAGE_DIR", str(STORAGE_DIR)))

def store_bytes(content: bytes, folder: str, filename: Optional[str], limit: int) -> str:
    """
    Save an upload under <STORAGE_DIR>/<folder>/ and return the relative path.
    Size is checked before anything touches disk.
    """
    if len(content) > limit:
        raise FileTooLargeError(limit)
    target_dir = _root() / folder
    target_dir.mkdir(parents=True, exist_ok=True)
    fp = target_dir / _safe_name(filename)
    stem, suffix, n = fp.stem, fp.suffix, 1
    while fp.exists():
        fp = target_dir / f"{stem}-{n}{suffix}"
        n += 1
    fp.write_bytes(content)
    return str(fp.relative_to(_root()))

def resolve(rel_path: str) -> Path:
    root = _root().resolve()
    fp = (root / rel_path).resolve()
    if root not in fp.parents:
        raise ValueError("invalid storage path")
    return fp

def exists(rel_path: Optional[str]) -> bool:
    if not rel_path:
        return False
    try:
        return resolve(rel_path).is_file()
    except ValueError:
        return False

def delete(rel_path: Optional[str]) -> None:
    if exists(rel_path):
        resolve(rel_path).unlink()
