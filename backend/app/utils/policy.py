# app/utils/policy.py
from __future__ import annotations
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import yaml

# Where to read the workflow policy file (compose sets WORKFLOW_POLICY_PATH; keep this default as a fallback)
POLICY_PATH = Path(os.getenv(
    "WORKFLOW_POLICY_PATH",
    str(Path(__file__).resolve().parents[2] / "policies" / "workflow.yaml"),
))

# cache in memory
_POLICY: Optional[dict] = None


# -------------------------- loading --------------------------

def _load_policy_from_file() -> dict:
    if POLICY_PATH.exists():
        with open(POLICY_PATH, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                return {}
            return data
    return {}

def get_policy() -> dict:
    global _POLICY
    if _POLICY is None:
        _POLICY = _load_policy_from_file()
    return _POLICY

def reload_policy() -> dict:
    global _POLICY
    _POLICY = _load_policy_from_file()
    return _POLICY


# -------------------------- typed views --------------------------

@dataclass(frozen=True)
class EscalationPolicy:
    """How far the approver resolver may climb when nobody matches directly."""
    faculty_levels: Tuple[int, ...] = (10, 9)       # Dean, Associate Dean
    admin_min_level: int = 8                        # department head or higher
    escalate_same_level_peers: bool = True
    escalate_to_admin_department: bool = True
    ladder: Tuple[str, ...] = field(default=("higher_position", "department_head", "faculty", "administrative"))

def escalation_policy(pol: Optional[dict] = None) -> EscalationPolicy:
    cfg = ((pol if pol is not None else get_policy()) or {}).get("escalation") or {}
    if not isinstance(cfg, dict):
        return EscalationPolicy()
    defaults = EscalationPolicy()
    levels = cfg.get("faculty_levels")
    ladder = cfg.get("ladder")
    return EscalationPolicy(
        faculty_levels=tuple(sorted((int(x) for x in levels), reverse=True)) if levels else defaults.faculty_levels,
        admin_min_level=int(cfg.get("admin_min_level", defaults.admin_min_level)),
        escalate_same_level_peers=bool(cfg.get("escalate_same_level_peers", defaults.escalate_same_level_peers)),
        escalate_to_admin_department=bool(cfg.get("escalate_to_admin_department", defaults.escalate_to_admin_department)),
        ladder=tuple(str(x) for x in ladder) if ladder else defaults.ladder,
    )

def max_reapply_attempts(pol: Optional[dict] = None) -> int:
    """Env wins over the policy file; default 3."""
    env = os.getenv("TRAINING_MAX_REAPPLY_ATTEMPTS")
    if env:
        return int(env)
    training = ((pol if pol is not None else get_policy()) or {}).get("training") or {}
    return int(training.get("max_reapply_attempts", 3))

def explain_policy() -> dict:
    pol = get_policy()
    esc = escalation_policy(pol)
    return {
        "escalation": {
            "faculty_levels": list(esc.faculty_levels),
            "admin_min_level": esc.admin_min_level,
            "escalate_same_level_peers": esc.escalate_same_level_peers,
            "escalate_to_admin_department": esc.escalate_to_admin_department,
            "ladder": list(esc.ladder),
        },
        "training": {"max_reapply_attempts": max_reapply_attempts(pol)},
        "policy_path": str(POLICY_PATH),
    }
