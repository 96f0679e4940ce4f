"""Initial schema: units, users, appointment_types, non_attendance_reasons, appointments.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

permission_enum = sa.Enum(
    "DEV", "ADM", "TEC", "USR", "PONTO_FOCAL", "COORDENADOR", "PORTARIA", name="permission"
)
status_enum = sa.Enum(
    "SCHEDULED", "ATTENDED", "COMPLETED", "NOT_PERFORMED", "CANCELLED", name="appointmentstatus"
)


def upgrade() -> None:
    op.create_table(
        "units",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_units_code"), "units", ["code"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("login", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("permission", permission_enum, nullable=False, server_default="USR"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("unit_id", sa.Integer(), nullable=True),
        sa.Column("hashed_password", sa.String(), nullable=True),
        sa.Column("last_login", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_login"), "users", ["login"], unique=True)
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    op.create_index(op.f("ix_users_unit_id"), "users", ["unit_id"], unique=False)

    for table in ("appointment_types", "non_attendance_reasons"):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("text", sa.String(), nullable=False),
            sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(op.f(f"ix_{table}_text"), table, ["text"], unique=True)

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("citizen_name", sa.String(), nullable=True),
        sa.Column("cpf", sa.String(), nullable=True),
        sa.Column("rg", sa.String(), nullable=True),
        sa.Column("process_number", sa.String(), nullable=True),
        sa.Column("start_at", sa.DateTime(), nullable=False),
        sa.Column("end_at", sa.DateTime(), nullable=False),
        sa.Column("status", status_enum, nullable=False, server_default="SCHEDULED"),
        sa.Column("summary", sa.String(), nullable=True),
        sa.Column("appointment_type_id", sa.Integer(), nullable=True),
        sa.Column("unit_id", sa.Integer(), nullable=True),
        sa.Column("technician_id", sa.Integer(), nullable=True),
        sa.Column("reason_id", sa.Integer(), nullable=True),
        sa.Column("technician_code", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("imported", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["appointment_type_id"], ["appointment_types.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"]),
        sa.ForeignKeyConstraint(["technician_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["reason_id"], ["non_attendance_reasons.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_appointments_cpf"), "appointments", ["cpf"], unique=False)
    op.create_index(op.f("ix_appointments_process_number"), "appointments", ["process_number"], unique=False)
    op.create_index(op.f("ix_appointments_start_at"), "appointments", ["start_at"], unique=False)
    op.create_index(op.f("ix_appointments_status"), "appointments", ["status"], unique=False)
    op.create_index(op.f("ix_appointments_unit_id"), "appointments", ["unit_id"], unique=False)
    op.create_index(op.f("ix_appointments_technician_id"), "appointments", ["technician_id"], unique=False)


def downgrade() -> None:
    for index in ("technician_id", "unit_id", "status", "start_at", "process_number", "cpf"):
        op.drop_index(op.f(f"ix_appointments_{index}"), table_name="appointments")
    op.drop_table("appointments")
    for table in ("non_attendance_reasons", "appointment_types"):
        op.drop_index(op.f(f"ix_{table}_text"), table_name=table)
        op.drop_table(table)
    op.drop_index(op.f("ix_users_unit_id"), table_name="users")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_index(op.f("ix_users_login"), table_name="users")
    op.drop_table("users")
    op.drop_index(op.f("ix_units_code"), table_name="units")
    op.drop_table("units")
    status_enum.drop(op.get_bind(), checkfirst=True)
    permission_enum.drop(op.get_bind(), checkfirst=True)
