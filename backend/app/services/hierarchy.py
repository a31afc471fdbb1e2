"""
Approver resolution over the organizational hierarchy.

A step's approver descriptors name a user, a role or a position. For a given
requester they are turned into concrete references, escalating up the
hierarchy when the configured approver would be the requester (or a peer),
and recording where each result came from.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.models.approval import ApproverKind, ApproverRef
from app.models.org import Department, Employee, Position, Role, User
from app.utils.policy import EscalationPolicy, escalation_policy

logger = logging.getLogger(__name__)


@dataclass
class ResolvedApprover:
    ref: ApproverRef
    original: Dict[str, Any]
    was_resolved_from_role: bool = False
    was_resolved_from_position: bool = False
    was_escalated: bool = False
    was_escalated_to_faculty: bool = False
    original_approver_id: Optional[int] = None
    original_role_id: Optional[int] = None
    original_position_id: Optional[int] = None

    @property
    def escalated(self) -> bool:
        return self.was_escalated or self.was_escalated_to_faculty

    def to_meta(self) -> Dict[str, Any]:
        return {
            "original": dict(self.original),
            "was_resolved_from_role": self.was_resolved_from_role,
            "was_resolved_from_position": self.was_resolved_from_position,
            "was_escalated": self.was_escalated,
            "was_escalated_to_faculty": self.was_escalated_to_faculty,
            "original_approver_id": self.original_approver_id,
            "original_role_id": self.original_role_id,
            "original_position_id": self.original_position_id,
        }


@dataclass(frozen=True)
class ResolutionScope:
    """Training restriction: positions outside these are left unresolved."""
    faculty_ids: FrozenSet[int] = field(default_factory=frozenset)
    department_ids: FrozenSet[int] = field(default_factory=frozenset)

    @property
    def restricted(self) -> bool:
        return bool(self.faculty_ids or self.department_ids)

    def allows(self, position: Position) -> bool:
        if not self.restricted:
            return True
        if position.faculty_id and position.faculty_id in self.faculty_ids:
            return True
        if position.department_id and position.department_id in self.department_ids:
            return True
        return False


class HierarchyResolver:
    def __init__(self, db: Session, policy: Optional[EscalationPolicy] = None):
        self.db = db
        self.policy = policy or escalation_policy()

    # ------------------------------------------------------------------ public

    def resolve(
        self,
        descriptor: Dict[str, Any],
        requester: Employee,
        scope: Optional[ResolutionScope] = None,
    ) -> List[ResolvedApprover]:
        ref = ApproverRef.from_descriptor(descriptor)
        if ref is None:
            return []
        if ref.kind == ApproverKind.USER:
            return self._resolve_user(ref, descriptor, requester)
        if ref.kind == ApproverKind.ROLE:
            return self._resolve_role(ref, descriptor, requester)
        return self._resolve_position(ref, descriptor, requester, scope or ResolutionScope())

    # ------------------------------------------------------------------ kinds

    def _resolve_user(self, ref: ApproverRef, descriptor, requester: Employee) -> List[ResolvedApprover]:
        approver = self.db.get(User, ref.id)
        if approver is not None and approver.employee_id == requester.id and self.is_at_max_level(requester):
            faculty_pos = self.faculty_position_for(requester)
            if faculty_pos is not None:
                return [ResolvedApprover(
                    ref=ApproverRef.position(faculty_pos.id),
                    original=descriptor,
                    was_escalated_to_faculty=True,
                    original_approver_id=ref.id,
                )]

        resolved_id = self._resolve_user_id(approver, ref.id, requester)
        if resolved_id is None:
            logger.info("user approver %s dropped: no escalation target for employee %s", ref.id, requester.id)
            return []
        return [ResolvedApprover(
            ref=ApproverRef.user(resolved_id),
            original=descriptor,
            was_escalated=resolved_id != ref.id,
            original_approver_id=ref.id,
        )]

    def _resolve_user_id(self, approver: Optional[User], approver_id: int, requester: Employee) -> Optional[int]:
        if approver is None or approver.employee is None:
            return approver_id
        emp = approver.employee
        if emp.id == requester.id:
            return self.escalate(requester)
        if self.policy.escalate_same_level_peers and requester.position and emp.position:
            if (requester.position.hierarchy_level == emp.position.hierarchy_level
                    and requester.position.id != emp.position.id):
                return self.escalate(requester)
        return approver_id

    def _resolve_role(self, ref: ApproverRef, descriptor, requester: Employee) -> List[ResolvedApprover]:
        if self.db.get(Role, ref.id) is None or not requester.department_id:
            return [ResolvedApprover(ref=ref, original=descriptor)]
        users = (
            self.db.query(User)
            .join(Employee, User.employee_id == Employee.id)
            .filter(User.roles.any(Role.id == ref.id))
            .filter(Employee.department_id == requester.department_id)
            .filter(Employee.id != requester.id)
            .order_by(User.id)
            .all()
        )
        if not users:
            return [ResolvedApprover(ref=ref, original=descriptor)]
        return [
            ResolvedApprover(
                ref=ApproverRef.user(u.id),
                original=descriptor,
                was_resolved_from_role=True,
                original_role_id=ref.id,
            )
            for u in users
        ]

    def _resolve_position(self, ref: ApproverRef, descriptor, requester: Employee,
                          scope: ResolutionScope) -> List[ResolvedApprover]:
        position = self.db.get(Position, ref.id)
        user_ids = self._position_user_ids(position, requester, scope) if position is not None else []
        if user_ids:
            return [ResolvedApprover(
                ref=ApproverRef.user(user_ids[0]),
                original=descriptor,
                was_resolved_from_position=True,
                original_position_id=ref.id,
            )]

        if requester.position_id and ref.id == requester.position_id:
            if self.is_at_max_level(requester):
                faculty_pos = self.faculty_position_for(requester)
                if faculty_pos is not None:
                    return [ResolvedApprover(
                        ref=ApproverRef.position(faculty_pos.id),
                        original=descriptor,
                        was_escalated_to_faculty=True,
                        original_position_id=ref.id,
                    )]
            else:
                escalated = self.escalate(requester)
                if escalated is not None:
                    return [ResolvedApprover(
                        ref=ApproverRef.user(escalated),
                        original=descriptor,
                        was_resolved_from_position=True,
                        was_escalated=True,
                        original_position_id=ref.id,
                    )]

        return [ResolvedApprover(ref=ref, original=descriptor)]

    def _position_user_ids(self, position: Position, requester: Employee, scope: ResolutionScope) -> List[int]:
        if not requester.department_id or not scope.allows(position):
            return []
        q = (
            self.db.query(User.id)
            .join(Employee, User.employee_id == Employee.id)
            .filter(Employee.position_id == position.id)
            .filter(Employee.department_id == requester.department_id)
            .filter(Employee.id != requester.id)
            .order_by(Employee.id)
        )
        return [row[0] for row in q.all()]

    # ------------------------------------------------------------------ hierarchy

    def is_at_max_level(self, requester: Employee) -> bool:
        if requester.position is None or not requester.department_id:
            return False
        levels = [
            p.hierarchy_level
            for p in self.db.query(Position).filter(Position.department_id == requester.department_id)
        ]
        if not levels:
            return False
        return (requester.position.hierarchy_level or 1) >= max(levels)

    def faculty_position_for(self, requester: Employee) -> Optional[Position]:
        dept = requester.department
        if dept is None or not dept.faculty_id:
            return None
        return (
            self.db.query(Position)
            .filter(Position.faculty_id == dept.faculty_id)
            .filter(Position.department_id.is_(None))
            .filter(Position.hierarchy_level.in_(self.policy.faculty_levels))
            .order_by(Position.hierarchy_level.desc(), Position.id)
            .first()
        )

    def escalate(self, requester: Employee) -> Optional[int]:
        """User id of the next approver up the ladder; never the requester."""
        if requester.position is None or requester.department is None:
            return None
        steps = {
            "higher_position": self._higher_position_user,
            "department_head": self._department_head_user,
            "faculty": self._faculty_user,
            "administrative": self._administrative_user,
        }
        for name in self.policy.ladder:
            fn = steps.get(name)
            if fn is None:
                continue
            found = fn(requester)
            if found is not None:
                logger.debug("escalated employee %s via %s to user %s", requester.id, name, found)
                return found
        return None

    def _first_user_in(self, position_id: int, requester: Employee) -> Optional[int]:
        row = (
            self.db.query(User.id)
            .join(Employee, User.employee_id == Employee.id)
            .filter(Employee.position_id == position_id)
            .filter(Employee.id != requester.id)
            .order_by(Employee.id)
            .first()
        )
        return row[0] if row else None

    def _higher_position_user(self, requester: Employee) -> Optional[int]:
        level = requester.position.hierarchy_level or 1
        higher = (
            self.db.query(Position)
            .filter(Position.department_id == requester.department_id)
            .filter(Position.hierarchy_level > level)
            .order_by(Position.hierarchy_level.asc(), Position.id)
            .first()
        )
        return self._first_user_in(higher.id, requester) if higher else None

    def _department_head_user(self, requester: Employee) -> Optional[int]:
        head_id = requester.department.head_position_id
        return self._first_user_in(head_id, requester) if head_id else None

    def _faculty_user(self, requester: Employee) -> Optional[int]:
        faculty_id = requester.department.faculty_id
        if not faculty_id:
            return None
        positions = (
            self.db.query(Position)
            .filter(Position.faculty_id == faculty_id)
            .filter(Position.hierarchy_level.in_(self.policy.faculty_levels))
            .order_by(Position.hierarchy_level.desc(), Position.id)
            .all()
        )
        for p in positions:
            found = self._first_user_in(p.id, requester)
            if found is not None:
                return found
        return None

    def _administrative_user(self, requester: Employee) -> Optional[int]:
        if not self.policy.escalate_to_admin_department or requester.department.type != "academic":
            return None
        position = (
            self.db.query(Position)
            .join(Department, Position.department_id == Department.id)
            .filter(Department.type == "administrative")
            .filter(Position.hierarchy_level >= self.policy.admin_min_level)
            .order_by(Department.id, Position.hierarchy_level.desc(), Position.id)
            .first()
        )
        return self._first_user_in(position.id, requester) if position else None


def dedupe(approvers: Iterable[ResolvedApprover]) -> List[ResolvedApprover]:
    """Keep the first approver per resolved (kind, id)."""
    seen = set()
    out = []
    for a in approvers:
        if a.ref in seen:
            continue
        seen.add(a.ref)
        out.append(a)
    return out


def filter_by_department(db: Session, approvers: List[ResolvedApprover], requester: Employee) -> List[ResolvedApprover]:
    """
    When a step holds more than one department-scoped approver configured with
    the same kind (say, several department head positions), keep only those of
    the requester's department. Escalated and role-based approvers are never filtered.
    """
    if not requester.department_id:
        return approvers
    dept_id = requester.department_id
    head_id = requester.department.head_position_id if requester.department else None

    def department_of(a: ResolvedApprover) -> Optional[int]:
        if a.ref.kind == ApproverKind.USER:
            u = db.get(User, a.ref.id)
            return u.employee.department_id if u is not None and u.employee is not None else None
        if a.ref.kind == ApproverKind.POSITION:
            p = db.get(Position, a.ref.id)
            if p is None:
                return None
            if head_id and p.id == head_id:
                return dept_id
            if p.department_id:
                return p.department_id
            owner = db.query(Department).filter(Department.head_position_id == p.id).first()
            return owner.id if owner else None
        return None

    def configured_kind(a: ResolvedApprover) -> ApproverKind:
        # group by what the step author selected, not by what it resolved to
        original = ApproverRef.from_descriptor(a.original or {})
        return original.kind if original is not None else a.ref.kind

    scoped: Dict[ApproverKind, List[ResolvedApprover]] = {}
    departments: Dict[int, Optional[int]] = {}
    for a in approvers:
        kind = configured_kind(a)
        if a.escalated or kind == ApproverKind.ROLE:
            continue
        d = department_of(a)
        if d is None:
            continue
        departments[id(a)] = d
        scoped.setdefault(kind, []).append(a)

    drop = set()
    for kind, group in scoped.items():
        if len(group) < 2:
            continue
        for a in group:
            if departments[id(a)] != dept_id:
                drop.add(id(a))
    return [a for a in approvers if id(a) not in drop]
