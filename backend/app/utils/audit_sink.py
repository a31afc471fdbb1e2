from __future__ import annotations
import os, json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List

# Default: backend/var/audit (override with env AUDIT_DIR)
_DEFAULT_DIR = Path(__file__).resolve().parents[2] / "var" / "audit"
AUDIT_DIR = Path(os.getenv("AUDIT_DIR", str(_DEFAULT_DIR)))

def _ensure_dir() -> None:
    AUDIT_DIR.mkdir(parents=True, exist_ok=True)

def write_event(event: Dict[str, Any]) -> None:
    """
    Append a single workflow event to a day-partitioned .jsonl file.
    Each line is a JSON object; dates and decimals are written as strings.
    """
    _ensure_dir()
    day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    fp = AUDIT_DIR / f"requests-{day}.jsonl"
    with fp.open("a", encoding="utf-8") as fh:
        json.dump(event, fh, ensure_ascii=False, default=str)
        fh.write("\n")

def read_events(day: str) -> List[Dict[str, Any]]:
    fp = AUDIT_DIR / f"requests-{day}.jsonl"
    if not fp.exists():
        return []
    with fp.open("r", encoding="utf-8") as fh:
        return [json.loads(line) for line in fh if line.strip()]
