from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from app.db import Base


class Family(Base):
    __tablename__ = "families"
    __table_args__ = ({"schema": "allowance"},)

    Id = Column(Integer, primary_key=True, index=True)
    Name = Column(String(120), nullable=False)
    CreatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)


class Child(Base):
    __tablename__ = "children"
    __table_args__ = (
        UniqueConstraint("UserId", name="uq_allowance_children_user"),
        {"schema": "allowance"},
    )

    Id = Column(Integer, primary_key=True, index=True)
    UserId = Column(Integer, nullable=False, index=True)
    FamilyId = Column(Integer, nullable=False, index=True)
    WeeklyAllowance = Column(Numeric(12, 2), nullable=False, default=0)
    CurrentBalance = Column(Numeric(12, 2), nullable=False, default=0)
    SavingsBalance = Column(Numeric(12, 2), nullable=False, default=0)
    LastAllowanceDate = Column(DateTime)
    AllowanceDay = Column(Integer)
    AllowancePaused = Column(Boolean, nullable=False, default=False)
    AllowancePausedReason = Column(String(500))
    SavingsTransferType = Column(String(20), nullable=False, default="None")
    SavingsTransferAmount = Column(Numeric(12, 2), nullable=False, default=0)
    SavingsTransferPercentage = Column(Integer, nullable=False, default=0)
    AllowDebt = Column(Boolean, nullable=False, default=False)
    IsActive = Column(Boolean, nullable=False, default=True)
    CreatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_allowance_transactions_child_category_created", "ChildId", "Category", "CreatedAt"),
        {"schema": "allowance"},
    )

    Id = Column(Integer, primary_key=True, index=True)
    ChildId = Column(Integer, nullable=False, index=True)
    Amount = Column(Numeric(12, 2), nullable=False)
    Type = Column(String(20), nullable=False)
    Category = Column(String(40), nullable=False)
    Description = Column(String(500), nullable=False)
    Notes = Column(Text)
    BalanceAfter = Column(Numeric(12, 2), nullable=False)
    CreatedByUserId = Column(Integer, nullable=False)
    CreatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)


class SavingsTransaction(Base):
    __tablename__ = "savings_transactions"
    __table_args__ = ({"schema": "allowance"},)

    Id = Column(Integer, primary_key=True, index=True)
    ChildId = Column(Integer, nullable=False, index=True)
    Amount = Column(Numeric(12, 2), nullable=False)
    Type = Column(String(20), nullable=False)
    Description = Column(String(500), nullable=False)
    BalanceAfter = Column(Numeric(12, 2), nullable=False)
    IsAutomatic = Column(Boolean, nullable=False, default=False)
    SourceAllowanceTransactionId = Column(Integer)
    CreatedByUserId = Column(Integer, nullable=False)
    CreatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)


class SavingsGoal(Base):
    __tablename__ = "savings_goals"
    __table_args__ = (
        Index("ix_allowance_goals_child_status_priority", "ChildId", "Status", "Priority"),
        {"schema": "allowance"},
    )

    Id = Column(Integer, primary_key=True, index=True)
    ChildId = Column(Integer, nullable=False, index=True)
    Name = Column(String(100), nullable=False)
    Description = Column(String(500))
    TargetAmount = Column(Numeric(12, 2), nullable=False)
    CurrentAmount = Column(Numeric(12, 2), nullable=False, default=0)
    ImageUrl = Column(String(500))
    ProductUrl = Column(String(500))
    Category = Column(String(30), nullable=False, default="Other")
    TargetDate = Column(DateTime)
    Status = Column(String(20), nullable=False, default="Active")
    CompletedAt = Column(DateTime)
    PurchasedAt = Column(DateTime)
    Priority = Column(Integer, nullable=False, default=1)
    AutoTransferAmount = Column(Numeric(12, 2), nullable=False, default=0)
    AutoTransferType = Column(String(20), nullable=False, default="None")
    CreatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)
    UpdatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)


class SavingsContribution(Base):
    __tablename__ = "savings_contributions"
    __table_args__ = ({"schema": "allowance"},)

    Id = Column(Integer, primary_key=True, index=True)
    GoalId = Column(Integer, nullable=False, index=True)
    ChildId = Column(Integer, nullable=False, index=True)
    Amount = Column(Numeric(12, 2), nullable=False)
    Type = Column(String(20), nullable=False)
    GoalBalanceAfter = Column(Numeric(12, 2), nullable=False)
    SourceTransactionId = Column(Integer)
    ParentMatchId = Column(Integer)
    Description = Column(String(500))
    CreatedByUserId = Column(Integer)
    CreatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)


class ParentMatchingRule(Base):
    __tablename__ = "parent_matching_rules"
    __table_args__ = (
        UniqueConstraint("GoalId", name="uq_allowance_matching_rules_goal"),
        {"schema": "allowance"},
    )

    Id = Column(Integer, primary_key=True, index=True)
    GoalId = Column(Integer, nullable=False, index=True)
    CreatedByUserId = Column(Integer, nullable=False)
    Type = Column(String(20), nullable=False)
    MatchRatio = Column(Numeric(12, 2), nullable=False)
    MaxMatchAmount = Column(Numeric(12, 2))
    TotalMatchedAmount = Column(Numeric(12, 2), nullable=False, default=0)
    IsActive = Column(Boolean, nullable=False, default=True)
    ExpiresAt = Column(DateTime)
    CreatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)


class GoalMilestone(Base):
    __tablename__ = "goal_milestones"
    __table_args__ = (
        UniqueConstraint("GoalId", "PercentComplete", name="uq_allowance_milestones_goal_percent"),
        {"schema": "allowance"},
    )

    Id = Column(Integer, primary_key=True, index=True)
    GoalId = Column(Integer, nullable=False, index=True)
    PercentComplete = Column(Integer, nullable=False)
    TargetAmount = Column(Numeric(12, 2), nullable=False)
    IsAchieved = Column(Boolean, nullable=False, default=False)
    AchievedAt = Column(DateTime)
    CelebrationMessage = Column(String(200))
    BonusAmount = Column(Numeric(12, 2))


class GoalChallenge(Base):
    __tablename__ = "goal_challenges"
    __table_args__ = (
        Index("ix_allowance_challenges_goal_status", "GoalId", "Status"),
        {"schema": "allowance"},
    )

    Id = Column(Integer, primary_key=True, index=True)
    GoalId = Column(Integer, nullable=False, index=True)
    CreatedByUserId = Column(Integer, nullable=False)
    TargetAmount = Column(Numeric(12, 2), nullable=False)
    StartingAmount = Column(Numeric(12, 2), nullable=False, default=0)
    StartDate = Column(DateTime, nullable=False)
    EndDate = Column(DateTime, nullable=False)
    BonusAmount = Column(Numeric(12, 2), nullable=False)
    Status = Column(String(20), nullable=False, default="Active")
    CompletedAt = Column(DateTime)
    Description = Column(String(500))
    CreatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)


class CategoryBudget(Base):
    __tablename__ = "category_budgets"
    __table_args__ = (
        UniqueConstraint("ChildId", "Category", name="uq_allowance_budgets_child_category"),
        {"schema": "allowance"},
    )

    Id = Column(Integer, primary_key=True, index=True)
    ChildId = Column(Integer, nullable=False, index=True)
    Category = Column(String(40), nullable=False)
    Limit = Column(Numeric(12, 2), nullable=False)
    Period = Column(String(20), nullable=False, default="Weekly")
    AlertThresholdPercent = Column(Integer, nullable=False, default=80)
    EnforceLimit = Column(Boolean, nullable=False, default=False)
    CreatedByUserId = Column(Integer, nullable=False)
    CreatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)
    UpdatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)
