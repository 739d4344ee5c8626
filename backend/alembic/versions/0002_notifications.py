"""create notifications table

Revision ID: 0002_notifications
Revises: 0001_auth_users_roles
Create Date: 2026-10-19 00:02:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_notifications"
down_revision = "0001_auth_users_roles"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        "IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = 'notifications') "
        "EXEC('CREATE SCHEMA notifications')"
    )

    op.create_table(
        "notifications",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("UserId", sa.Integer(), nullable=False),
        sa.Column("CreatedByUserId", sa.Integer(), nullable=False),
        sa.Column("Type", sa.String(length=50), nullable=False, server_default=sa.text("'General'")),
        sa.Column("Title", sa.Unicode(length=160), nullable=False),
        sa.Column("Body", sa.Unicode(length=400), nullable=True),
        sa.Column("SourceModule", sa.String(length=80), nullable=True),
        sa.Column("SourceId", sa.String(length=120), nullable=True),
        sa.Column("MetaJson", sa.Text(), nullable=True),
        sa.Column("IsRead", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("ReadAt", sa.DateTime(), nullable=True),
        sa.Column("IsDismissed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("DismissedAt", sa.DateTime(), nullable=True),
        sa.Column("CreatedAt", sa.DateTime(), nullable=False, server_default=sa.text("SYSUTCDATETIME()")),
        sa.Column("UpdatedAt", sa.DateTime(), nullable=False, server_default=sa.text("SYSUTCDATETIME()")),
        schema="notifications",
    )
    op.create_index("ix_notifications_user_id", "notifications", ["UserId"], schema="notifications")
    op.create_index(
        "ix_notifications_created_by_user_id", "notifications", ["CreatedByUserId"], schema="notifications"
    )
    op.create_index(
        "ix_notifications_user_status_created",
        "notifications",
        ["UserId", "IsDismissed", "IsRead", "CreatedAt"],
        schema="notifications",
    )


def downgrade() -> None:
    op.drop_index("ix_notifications_user_status_created", table_name="notifications", schema="notifications")
    op.drop_index("ix_notifications_created_by_user_id", table_name="notifications", schema="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications", schema="notifications")
    op.drop_table("notifications", schema="notifications")
