"""hr workflow schema

Revision ID: 3b1f0a9c2d10
Revises:
Create Date: 2026-10-19 09:12:44.118203
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3b1f0a9c2d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(bind, name: str) -> bool:
    insp = sa.inspect(bind)
    return name in insp.get_table_names()


def _index(table: str, columns, unique: bool = False) -> None:
    name = f"ix_{table}_{'_'.join(columns)}"
    op.create_index(op.f(name), table, list(columns), unique=unique)


def upgrade() -> None:
    """Create the workflow tables if they don't already exist."""
    bind = op.get_bind()

    # ---- ORGANIZATION ----
    if not _table_exists(bind, "faculties"):
        op.create_table(
            "faculties",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(length=32), nullable=False, unique=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )

    if not _table_exists(bind, "departments"):
        # head_position_id gets its FK after positions exists
        op.create_table(
            "departments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(length=32), nullable=False, unique=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("type", sa.String(length=32), nullable=False),
            sa.Column("faculty_id", sa.Integer(), sa.ForeignKey("faculties.id"), nullable=True),
            sa.Column("head_position_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        _index("departments", ["faculty_id"])

    if not _table_exists(bind, "positions"):
        op.create_table(
            "positions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(length=32), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=True),
            sa.Column("faculty_id", sa.Integer(), sa.ForeignKey("faculties.id"), nullable=True),
            sa.Column("hierarchy_level", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        _index("positions", ["department_id"])
        _index("positions", ["faculty_id"])
        if bind.dialect.name != "sqlite":
            op.create_foreign_key(
                "fk_departments_head_position", "departments", "positions",
                ["head_position_id"], ["id"],
            )

    if not _table_exists(bind, "employees"):
        op.create_table(
            "employees",
            sa.Column("id", sa.String(length=32), primary_key=True),
            sa.Column("first_name", sa.String(length=128), nullable=False),
            sa.Column("middle_name", sa.String(length=128), nullable=True),
            sa.Column("surname", sa.String(length=128), nullable=False),
            sa.Column("email_address", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=True),
            sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=True),
            sa.Column("position_id", sa.Integer(), sa.ForeignKey("positions.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        _index("employees", ["email_address"])
        _index("employees", ["department_id"])
        _index("employees", ["position_id"])

    if not _table_exists(bind, "roles"):
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=128), nullable=False, unique=True),
            sa.Column("label", sa.String(length=255), nullable=True),
            sa.Column("permissions", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )

    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("employee_id", sa.String(length=32),
                      sa.ForeignKey("employees.id", ondelete="SET NULL"), nullable=True, unique=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        _index("users", ["email"], unique=True)

    if not _table_exists(bind, "user_roles"):
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        )

    # ---- REQUEST TYPES + SUBMISSIONS ----
    if not _table_exists(bind, "request_types"):
        op.create_table(
            "request_types",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("has_fulfillment", sa.Boolean(), nullable=False),
            sa.Column("approval_steps", sa.JSON(), nullable=True),
            sa.Column("is_published", sa.Boolean(), nullable=False),
            sa.Column("published_at", sa.DateTime(), nullable=True),
            sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        _index("request_types", ["name"])

    if not _table_exists(bind, "request_fields"):
        op.create_table(
            "request_fields",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("request_type_id", sa.Integer(),
                      sa.ForeignKey("request_types.id", ondelete="CASCADE"), nullable=False),
            sa.Column("field_key", sa.String(length=128), nullable=False),
            sa.Column("label", sa.String(length=255), nullable=False),
            sa.Column("field_type", sa.String(length=32), nullable=False),
            sa.Column("is_required", sa.Boolean(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("options", sa.JSON(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False),
        )
        _index("request_fields", ["request_type_id"])

    if not _table_exists(bind, "request_submissions"):
        op.create_table(
            "request_submissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("reference_code", sa.String(length=32), nullable=False),
            sa.Column("request_type_id", sa.Integer(), sa.ForeignKey("request_types.id"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False),
            sa.Column("current_step_index", sa.Integer(), nullable=True),
            sa.Column("approval_steps", sa.JSON(), nullable=True),
            sa.Column("approval_state", sa.JSON(), nullable=True),
            sa.Column("submitted_at", sa.DateTime(), nullable=False),
            sa.Column("fulfilled_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        _index("request_submissions", ["reference_code"], unique=True)
        _index("request_submissions", ["request_type_id"])
        _index("request_submissions", ["user_id"])
        _index("request_submissions", ["status"])

    if not _table_exists(bind, "request_answers"):
        op.create_table(
            "request_answers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("submission_id", sa.Integer(),
                      sa.ForeignKey("request_submissions.id", ondelete="CASCADE"), nullable=False),
            sa.Column("field_id", sa.Integer(),
                      sa.ForeignKey("request_fields.id", ondelete="CASCADE"), nullable=False),
            sa.Column("value", sa.Text(), nullable=True),
            sa.Column("value_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        _index("request_answers", ["submission_id"])
        _index("request_answers", ["field_id"])

    if not _table_exists(bind, "request_approval_actions"):
        op.create_table(
            "request_approval_actions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("submission_id", sa.Integer(),
                      sa.ForeignKey("request_submissions.id", ondelete="CASCADE"), nullable=False),
            sa.Column("step_index", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False),
            sa.Column("approver_type", sa.String(length=16), nullable=False),
            sa.Column("approver_ref", sa.Integer(), nullable=False),
            sa.Column("acted_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("acted_at", sa.DateTime(), nullable=True),
            sa.Column("meta", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        _index("request_approval_actions", ["submission_id"])
        _index("request_approval_actions", ["step_index"])

    if not _table_exists(bind, "request_fulfillments"):
        op.create_table(
            "request_fulfillments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("submission_id", sa.Integer(),
                      sa.ForeignKey("request_submissions.id", ondelete="CASCADE"), nullable=False, unique=True),
            sa.Column("fulfilled_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("file_path", sa.String(length=1024), nullable=True),
            sa.Column("original_filename", sa.String(length=255), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
        )

    # ---- TRAININGS ----
    if not _table_exists(bind, "trainings"):
        op.create_table(
            "trainings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("reference_number", sa.String(length=64), nullable=True, unique=True),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("date_from", sa.Date(), nullable=True),
            sa.Column("date_to", sa.Date(), nullable=True),
            sa.Column("hours", sa.Numeric(6, 2), nullable=True),
            sa.Column("facilitator", sa.String(length=255), nullable=True),
            sa.Column("venue", sa.String(length=255), nullable=True),
            sa.Column("capacity", sa.Integer(), nullable=True),
            sa.Column("remarks", sa.Text(), nullable=True),
            sa.Column("requires_approval", sa.Boolean(), nullable=False),
            sa.Column("request_type_id", sa.Integer(), sa.ForeignKey("request_types.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )

    for table, column, target in (
        ("training_allowed_faculties", "faculty_id", "faculties.id"),
        ("training_allowed_departments", "department_id", "departments.id"),
        ("training_allowed_positions", "position_id", "positions.id"),
    ):
        if not _table_exists(bind, table):
            op.create_table(
                table,
                sa.Column("training_id", sa.Integer(),
                          sa.ForeignKey("trainings.id", ondelete="CASCADE"), primary_key=True),
                sa.Column(column, sa.Integer(), sa.ForeignKey(target, ondelete="CASCADE"), primary_key=True),
            )

    if not _table_exists(bind, "training_applications"):
        op.create_table(
            "training_applications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("employee_id", sa.String(length=32), sa.ForeignKey("employees.id"), nullable=False),
            sa.Column("training_id", sa.Integer(),
                      sa.ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False),
            sa.Column("status", sa.String(length=32), nullable=False),
            sa.Column("re_apply_count", sa.Integer(), nullable=False),
            sa.Column("request_submission_id", sa.Integer(),
                      sa.ForeignKey("request_submissions.id", ondelete="SET NULL"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("employee_id", "training_id", name="uq_training_application_employee"),
        )
        _index("training_applications", ["employee_id"])
        _index("training_applications", ["training_id"])
        _index("training_applications", ["request_submission_id"])

    # ---- LEAVE ----
    if not _table_exists(bind, "leave_types"):
        op.create_table(
            "leave_types",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(length=32), nullable=False, unique=True),
            sa.Column("name", sa.String(length=128), nullable=False),
            sa.Column("max_days_per_request", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
        )

    if not _table_exists(bind, "leave_balances"):
        op.create_table(
            "leave_balances",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("employee_id", sa.String(length=32),
                      sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False),
            sa.Column("leave_type_id", sa.Integer(), sa.ForeignKey("leave_types.id"), nullable=False),
            sa.Column("year", sa.Integer(), nullable=False),
            sa.Column("entitled", sa.Numeric(8, 2), nullable=False),
            sa.Column("accrued", sa.Numeric(8, 2), nullable=False),
            sa.Column("used", sa.Numeric(8, 2), nullable=False),
            sa.Column("pending", sa.Numeric(8, 2), nullable=False),
            sa.Column("balance", sa.Numeric(8, 2), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("employee_id", "leave_type_id", "year", name="uq_leave_balance_year"),
        )
        _index("leave_balances", ["employee_id"])

    if not _table_exists(bind, "holidays"):
        op.create_table(
            "holidays",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("is_recurring", sa.Boolean(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
        )
        _index("holidays", ["date"])

    # ---- AUDIT LOG ----
    if not _table_exists(bind, "audit_log"):
        op.create_table(
            "audit_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("action", sa.String(length=128), nullable=True),
            sa.Column("submission_id", sa.Integer(), nullable=True),
            sa.Column("actor", sa.Integer(), nullable=True),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        _index("audit_log", ["action"])
        _index("audit_log", ["submission_id"])


def downgrade() -> None:
    """Drop the same objects to roll back this revision."""
    bind = op.get_bind()
    cascade = "" if bind.dialect.name == "sqlite" else " CASCADE"
    if bind.dialect.name != "sqlite":
        op.execute("ALTER TABLE departments DROP CONSTRAINT IF EXISTS fk_departments_head_position")
    # Drop in reverse dependency order
    for table in (
        "audit_log", "holidays", "leave_balances", "leave_types",
        "training_applications", "training_allowed_positions", "training_allowed_departments",
        "training_allowed_faculties", "trainings",
        "request_fulfillments", "request_approval_actions", "request_answers", "request_submissions",
        "request_fields", "request_types",
        "user_roles", "users", "roles", "employees", "positions", "departments", "faculties",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table}{cascade}")
