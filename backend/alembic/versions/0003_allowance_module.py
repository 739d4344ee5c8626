"""create allowance module tables

Revision ID: 0003_allowance_module
Revises: 0002_notifications
Create Date: 2026-10-19 00:03:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0003_allowance_module"
down_revision = "0002_notifications"
branch_labels = None
depends_on = None

SCHEMA = "allowance"


def _money(name: str, nullable: bool = False, zero_default: bool = True) -> sa.Column:
    if zero_default and not nullable:
        return sa.Column(name, sa.Numeric(12, 2), nullable=False, server_default=sa.text("0"))
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable)


def _utc_now(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(), nullable=False, server_default=sa.text("SYSUTCDATETIME()"))


def upgrade() -> None:
    op.execute("IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = 'allowance') EXEC('CREATE SCHEMA allowance')")

    op.create_table(
        "families",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("Name", sa.String(length=120), nullable=False),
        _utc_now("CreatedAt"),
        schema=SCHEMA,
    )

    op.create_table(
        "children",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("UserId", sa.Integer(), nullable=False),
        sa.Column("FamilyId", sa.Integer(), nullable=False),
        _money("WeeklyAllowance"),
        _money("CurrentBalance"),
        _money("SavingsBalance"),
        sa.Column("LastAllowanceDate", sa.DateTime(), nullable=True),
        sa.Column("AllowanceDay", sa.Integer(), nullable=True),
        sa.Column("AllowancePaused", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("AllowancePausedReason", sa.String(length=500), nullable=True),
        sa.Column("SavingsTransferType", sa.String(length=20), nullable=False, server_default=sa.text("'None'")),
        _money("SavingsTransferAmount"),
        sa.Column("SavingsTransferPercentage", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("AllowDebt", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("IsActive", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _utc_now("CreatedAt"),
        sa.UniqueConstraint("UserId", name="uq_allowance_children_user"),
        sa.CheckConstraint(
            "SavingsTransferPercentage BETWEEN 0 AND 100",
            name="ck_allowance_children_transfer_percentage",
        ),
        sa.CheckConstraint(
            "AllowanceDay IS NULL OR AllowanceDay BETWEEN 0 AND 6",
            name="ck_allowance_children_allowance_day",
        ),
        schema=SCHEMA,
    )
    op.create_index("ix_allowance_children_family_id", "children", ["FamilyId"], schema=SCHEMA)

    op.create_table(
        "transactions",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("ChildId", sa.Integer(), nullable=False),
        _money("Amount", zero_default=False),
        sa.Column("Type", sa.String(length=20), nullable=False),
        sa.Column("Category", sa.String(length=40), nullable=False),
        sa.Column("Description", sa.String(length=500), nullable=False),
        sa.Column("Notes", sa.Text(), nullable=True),
        _money("BalanceAfter", zero_default=False),
        sa.Column("CreatedByUserId", sa.Integer(), nullable=False),
        _utc_now("CreatedAt"),
        schema=SCHEMA,
    )
    op.create_index("ix_allowance_transactions_child_id", "transactions", ["ChildId"], schema=SCHEMA)
    op.create_index(
        "ix_allowance_transactions_child_category_created",
        "transactions",
        ["ChildId", "Category", "CreatedAt"],
        schema=SCHEMA,
    )

    op.create_table(
        "savings_transactions",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("ChildId", sa.Integer(), nullable=False),
        _money("Amount", zero_default=False),
        sa.Column("Type", sa.String(length=20), nullable=False),
        sa.Column("Description", sa.String(length=500), nullable=False),
        _money("BalanceAfter", zero_default=False),
        sa.Column("IsAutomatic", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("SourceAllowanceTransactionId", sa.Integer(), nullable=True),
        sa.Column("CreatedByUserId", sa.Integer(), nullable=False),
        _utc_now("CreatedAt"),
        schema=SCHEMA,
    )
    op.create_index("ix_allowance_savings_transactions_child_id", "savings_transactions", ["ChildId"], schema=SCHEMA)

    op.create_table(
        "savings_goals",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("ChildId", sa.Integer(), nullable=False),
        sa.Column("Name", sa.String(length=100), nullable=False),
        sa.Column("Description", sa.String(length=500), nullable=True),
        _money("TargetAmount", zero_default=False),
        _money("CurrentAmount"),
        sa.Column("ImageUrl", sa.String(length=500), nullable=True),
        sa.Column("ProductUrl", sa.String(length=500), nullable=True),
        sa.Column("Category", sa.String(length=30), nullable=False, server_default=sa.text("'Other'")),
        sa.Column("TargetDate", sa.DateTime(), nullable=True),
        sa.Column("Status", sa.String(length=20), nullable=False, server_default=sa.text("'Active'")),
        sa.Column("CompletedAt", sa.DateTime(), nullable=True),
        sa.Column("PurchasedAt", sa.DateTime(), nullable=True),
        sa.Column("Priority", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _money("AutoTransferAmount"),
        sa.Column("AutoTransferType", sa.String(length=20), nullable=False, server_default=sa.text("'None'")),
        _utc_now("CreatedAt"),
        _utc_now("UpdatedAt"),
        schema=SCHEMA,
    )
    op.create_index("ix_allowance_savings_goals_child_id", "savings_goals", ["ChildId"], schema=SCHEMA)
    op.create_index(
        "ix_allowance_goals_child_status_priority",
        "savings_goals",
        ["ChildId", "Status", "Priority"],
        schema=SCHEMA,
    )

    op.create_table(
        "savings_contributions",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("GoalId", sa.Integer(), nullable=False),
        sa.Column("ChildId", sa.Integer(), nullable=False),
        _money("Amount", zero_default=False),
        sa.Column("Type", sa.String(length=20), nullable=False),
        _money("GoalBalanceAfter", zero_default=False),
        sa.Column("SourceTransactionId", sa.Integer(), nullable=True),
        sa.Column("ParentMatchId", sa.Integer(), nullable=True),
        sa.Column("Description", sa.String(length=500), nullable=True),
        sa.Column("CreatedByUserId", sa.Integer(), nullable=True),
        _utc_now("CreatedAt"),
        schema=SCHEMA,
    )
    op.create_index("ix_allowance_savings_contributions_goal_id", "savings_contributions", ["GoalId"], schema=SCHEMA)
    op.create_index("ix_allowance_savings_contributions_child_id", "savings_contributions", ["ChildId"], schema=SCHEMA)

    op.create_table(
        "parent_matching_rules",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("GoalId", sa.Integer(), nullable=False),
        sa.Column("CreatedByUserId", sa.Integer(), nullable=False),
        sa.Column("Type", sa.String(length=20), nullable=False),
        _money("MatchRatio", zero_default=False),
        _money("MaxMatchAmount", nullable=True),
        _money("TotalMatchedAmount"),
        sa.Column("IsActive", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("ExpiresAt", sa.DateTime(), nullable=True),
        _utc_now("CreatedAt"),
        sa.UniqueConstraint("GoalId", name="uq_allowance_matching_rules_goal"),
        schema=SCHEMA,
    )

    op.create_table(
        "goal_milestones",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("GoalId", sa.Integer(), nullable=False),
        sa.Column("PercentComplete", sa.Integer(), nullable=False),
        _money("TargetAmount", zero_default=False),
        sa.Column("IsAchieved", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("AchievedAt", sa.DateTime(), nullable=True),
        sa.Column("CelebrationMessage", sa.String(length=200), nullable=True),
        _money("BonusAmount", nullable=True),
        sa.UniqueConstraint("GoalId", "PercentComplete", name="uq_allowance_milestones_goal_percent"),
        schema=SCHEMA,
    )
    op.create_index("ix_allowance_goal_milestones_goal_id", "goal_milestones", ["GoalId"], schema=SCHEMA)

    op.create_table(
        "goal_challenges",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("GoalId", sa.Integer(), nullable=False),
        sa.Column("CreatedByUserId", sa.Integer(), nullable=False),
        _money("TargetAmount", zero_default=False),
        _money("StartingAmount"),
        sa.Column("StartDate", sa.DateTime(), nullable=False),
        sa.Column("EndDate", sa.DateTime(), nullable=False),
        _money("BonusAmount", zero_default=False),
        sa.Column("Status", sa.String(length=20), nullable=False, server_default=sa.text("'Active'")),
        sa.Column("CompletedAt", sa.DateTime(), nullable=True),
        sa.Column("Description", sa.String(length=500), nullable=True),
        _utc_now("CreatedAt"),
        schema=SCHEMA,
    )
    op.create_index("ix_allowance_goal_challenges_goal_id", "goal_challenges", ["GoalId"], schema=SCHEMA)
    op.create_index("ix_allowance_challenges_goal_status", "goal_challenges", ["GoalId", "Status"], schema=SCHEMA)

    op.create_table(
        "category_budgets",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("ChildId", sa.Integer(), nullable=False),
        sa.Column("Category", sa.String(length=40), nullable=False),
        _money("Limit", zero_default=False),
        sa.Column("Period", sa.String(length=20), nullable=False, server_default=sa.text("'Weekly'")),
        sa.Column("AlertThresholdPercent", sa.Integer(), nullable=False, server_default=sa.text("80")),
        sa.Column("EnforceLimit", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("CreatedByUserId", sa.Integer(), nullable=False),
        _utc_now("CreatedAt"),
        _utc_now("UpdatedAt"),
        sa.UniqueConstraint("ChildId", "Category", name="uq_allowance_budgets_child_category"),
        schema=SCHEMA,
    )
    op.create_index("ix_allowance_category_budgets_child_id", "category_budgets", ["ChildId"], schema=SCHEMA)


def downgrade() -> None:
    for table in (
        "category_budgets",
        "goal_challenges",
        "goal_milestones",
        "parent_matching_rules",
        "savings_contributions",
        "savings_goals",
        "savings_transactions",
        "transactions",
        "children",
        "families",
    ):
        op.drop_table(table, schema=SCHEMA)
