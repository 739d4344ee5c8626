"""create auth users and module roles

Revision ID: 0001_auth_users_roles
Revises:
Create Date: 2026-10-19 00:01:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_auth_users_roles"
down_revision = None
branch_labels = None
depends_on = None


def _utc_now_column(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(), nullable=False, server_default=sa.text("SYSUTCDATETIME()"))


def upgrade() -> None:
    op.execute("IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = 'auth') EXEC('CREATE SCHEMA auth')")

    op.create_table(
        "users",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("Username", sa.String(length=120), nullable=False),
        sa.Column("FirstName", sa.String(length=120), nullable=True),
        sa.Column("LastName", sa.String(length=120), nullable=True),
        sa.Column("Email", sa.String(length=254), nullable=True),
        sa.Column("FamilyId", sa.Integer(), nullable=True),
        sa.Column("Role", sa.String(length=20), nullable=False, server_default=sa.text("'Parent'")),
        sa.Column("IsActive", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _utc_now_column("CreatedAt"),
        sa.UniqueConstraint("Username", name="uq_auth_users_username"),
        schema="auth",
    )
    op.create_index("ix_auth_users_family_id", "users", ["FamilyId"], schema="auth")

    op.create_table(
        "user_module_roles",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("UserId", sa.Integer(), nullable=False),
        sa.Column("ModuleName", sa.String(length=80), nullable=False),
        sa.Column("Role", sa.String(length=20), nullable=False),
        _utc_now_column("CreatedAt"),
        _utc_now_column("UpdatedAt"),
        sa.UniqueConstraint("UserId", "ModuleName", name="uq_auth_user_module_roles"),
        schema="auth",
    )
    op.create_index("ix_auth_user_module_roles_user_id", "user_module_roles", ["UserId"], schema="auth")


def downgrade() -> None:
    op.drop_index("ix_auth_user_module_roles_user_id", table_name="user_module_roles", schema="auth")
    op.drop_table("user_module_roles", schema="auth")
    op.drop_index("ix_auth_users_family_id", table_name="users", schema="auth")
    op.drop_table("users", schema="auth")
