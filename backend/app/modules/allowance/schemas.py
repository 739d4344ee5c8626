from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SavingsTransferType(str, Enum):
    NoTransfer = "None"
    FixedAmount = "FixedAmount"
    Percentage = "Percentage"


class TransactionType(str, Enum):
    Credit = "Credit"
    Debit = "Debit"


class TransactionCategory(str, Enum):
    Allowance = "Allowance"
    Chores = "Chores"
    Gift = "Gift"
    BonusReward = "BonusReward"
    Task = "Task"
    OtherIncome = "OtherIncome"
    Toys = "Toys"
    Games = "Games"
    Books = "Books"
    Clothes = "Clothes"
    Snacks = "Snacks"
    Candy = "Candy"
    Electronics = "Electronics"
    Entertainment = "Entertainment"
    Sports = "Sports"
    Crafts = "Crafts"
    OtherSpending = "OtherSpending"
    Savings = "Savings"
    Charity = "Charity"
    Investment = "Investment"


INCOME_CATEGORIES = {
    TransactionCategory.Allowance,
    TransactionCategory.Chores,
    TransactionCategory.Gift,
    TransactionCategory.BonusReward,
    TransactionCategory.Task,
    TransactionCategory.OtherIncome,
}


class SavingsTransactionType(str, Enum):
    Deposit = "Deposit"
    Withdrawal = "Withdrawal"


class GoalStatus(str, Enum):
    Active = "Active"
    Completed = "Completed"
    Purchased = "Purchased"
    Cancelled = "Cancelled"
    Paused = "Paused"


class GoalCategory(str, Enum):
    Toy = "Toy"
    Game = "Game"
    Electronics = "Electronics"
    Clothing = "Clothing"
    Experience = "Experience"
    Books = "Books"
    Sports = "Sports"
    Savings = "Savings"
    Other = "Other"


class ContributionType(str, Enum):
    ChildDeposit = "ChildDeposit"
    AutoTransfer = "AutoTransfer"
    ParentMatch = "ParentMatch"
    ParentGift = "ParentGift"
    ChallengeBonus = "ChallengeBonus"
    Withdrawal = "Withdrawal"
    ExternalGift = "ExternalGift"


class GoalTransferType(str, Enum):
    NoTransfer = "None"
    FixedAmount = "FixedAmount"
    Percentage = "Percentage"


class MatchingType(str, Enum):
    RatioMatch = "RatioMatch"
    PercentageMatch = "PercentageMatch"


class ChallengeStatus(str, Enum):
    Active = "Active"
    Completed = "Completed"
    Cancelled = "Cancelled"
    Expired = "Expired"


class BudgetPeriod(str, Enum):
    Weekly = "Weekly"
    Monthly = "Monthly"


class BudgetStatus(str, Enum):
    Safe = "Safe"
    Warning = "Warning"
    AtLimit = "AtLimit"
    OverBudget = "OverBudget"


class ChildOut(BaseModel):
    Id: int
    UserId: int
    FamilyId: int
    FirstName: str | None = None
    LastName: str | None = None
    WeeklyAllowance: float
    CurrentBalance: float
    SavingsBalance: float
    LastAllowanceDate: datetime | None = None
    NextAllowanceDate: datetime | None = None
    AllowanceDay: int | None = None
    AllowancePaused: bool
    AllowancePausedReason: str | None = None
    SavingsTransferType: str
    SavingsTransferAmount: float
    SavingsTransferPercentage: int
    AllowDebt: bool


class AllowanceSettingsUpdate(BaseModel):
    WeeklyAllowance: float | None = None
    AllowanceDay: int | None = None
    ClearAllowanceDay: bool = False
    AllowDebt: bool | None = None


class PauseAllowanceRequest(BaseModel):
    Reason: str | None = Field(default=None, max_length=500)


class AllowancePaymentOut(BaseModel):
    ChildId: int
    Amount: float
    TransactionId: int
    SavingsTransferred: float
    GoalTransfers: float
    PaidAt: datetime


class AllowanceRunOut(BaseModel):
    Processed: int
    Paid: int
    Failed: int
    ExpiredChallenges: int
    Payments: list[AllowancePaymentOut]


class TransactionCreate(BaseModel):
    Amount: float = Field(gt=0)
    Type: TransactionType
    Category: TransactionCategory
    Description: str = Field(min_length=1, max_length=500)
    Notes: str | None = None
    DrawFromSavings: bool = False
    ApplySavingsSweep: bool = False


class TransactionOut(BaseModel):
    Id: int
    ChildId: int
    Amount: float
    Type: str
    Category: str
    Description: str
    Notes: str | None = None
    BalanceAfter: float
    CreatedByUserId: int
    CreatedAt: datetime


class TransactionResultOut(BaseModel):
    Transaction: TransactionOut
    DrawnFromSavings: float = 0
    SavingsTransferred: float = 0
    BudgetWarning: str | None = None


class SavingsConfigUpdate(BaseModel):
    TransferType: SavingsTransferType
    Amount: float = Field(default=0, ge=0)


class SavingsAmountRequest(BaseModel):
    Amount: float = Field(gt=0)
    Description: str | None = Field(default=None, max_length=500)


class SavingsTransactionOut(BaseModel):
    Id: int
    ChildId: int
    Amount: float
    Type: str
    Description: str
    BalanceAfter: float
    IsAutomatic: bool
    SourceAllowanceTransactionId: int | None = None
    CreatedByUserId: int
    CreatedAt: datetime


class SavingsSummaryOut(BaseModel):
    ChildId: int
    CurrentBalance: float
    SavingsBalance: float
    TransferType: str
    TransferAmount: float
    TransferPercentage: int
    TotalDeposited: float
    TotalWithdrawn: float
    DepositCount: int
    WithdrawalCount: int
    LastTransactionDate: datetime | None = None


class MilestoneOut(BaseModel):
    Id: int
    PercentComplete: int
    TargetAmount: float
    IsAchieved: bool
    AchievedAt: datetime | None = None
    CelebrationMessage: str | None = None
    BonusAmount: float | None = None


class MilestoneBonusUpdate(BaseModel):
    BonusAmount: float | None = Field(default=None, ge=0)


class MatchingRuleCreate(BaseModel):
    Type: MatchingType
    MatchRatio: float = Field(gt=0)
    MaxMatchAmount: float | None = Field(default=None, gt=0)
    ExpiresAt: datetime | None = None


class MatchingRuleUpdate(BaseModel):
    MatchRatio: float | None = Field(default=None, gt=0)
    MaxMatchAmount: float | None = Field(default=None, gt=0)
    IsActive: bool | None = None
    ExpiresAt: datetime | None = None


class MatchingRuleOut(BaseModel):
    Id: int
    GoalId: int
    Type: str
    MatchRatio: float
    MaxMatchAmount: float | None = None
    TotalMatchedAmount: float
    IsActive: bool
    ExpiresAt: datetime | None = None


class ChallengeCreate(BaseModel):
    TargetAmount: float = Field(gt=0)
    EndDate: datetime
    BonusAmount: float = Field(gt=0)
    Description: str | None = Field(default=None, max_length=500)


class ChallengeOut(BaseModel):
    Id: int
    GoalId: int
    TargetAmount: float
    StartingAmount: float
    Progress: float
    StartDate: datetime
    EndDate: datetime
    BonusAmount: float
    Status: str
    CompletedAt: datetime | None = None
    Description: str | None = None


class GoalCreate(BaseModel):
    Name: str = Field(min_length=1, max_length=100)
    Description: str | None = Field(default=None, max_length=500)
    TargetAmount: float = Field(gt=0)
    ImageUrl: str | None = Field(default=None, max_length=500)
    ProductUrl: str | None = Field(default=None, max_length=500)
    Category: GoalCategory = GoalCategory.Other
    TargetDate: datetime | None = None
    Priority: int = Field(default=1, ge=1)
    AutoTransferType: GoalTransferType = GoalTransferType.NoTransfer
    AutoTransferAmount: float = Field(default=0, ge=0)


class GoalUpdate(BaseModel):
    Name: str | None = Field(default=None, min_length=1, max_length=100)
    Description: str | None = Field(default=None, max_length=500)
    TargetAmount: float | None = Field(default=None, gt=0)
    ImageUrl: str | None = Field(default=None, max_length=500)
    ProductUrl: str | None = Field(default=None, max_length=500)
    Category: GoalCategory | None = None
    TargetDate: datetime | None = None
    Priority: int | None = Field(default=None, ge=1)
    AutoTransferType: GoalTransferType | None = None
    AutoTransferAmount: float | None = Field(default=None, ge=0)


class GoalOut(BaseModel):
    Id: int
    ChildId: int
    Name: str
    Description: str | None = None
    TargetAmount: float
    CurrentAmount: float
    RemainingAmount: float
    ProgressPercentage: float
    ImageUrl: str | None = None
    ProductUrl: str | None = None
    Category: str
    TargetDate: datetime | None = None
    Status: str
    CompletedAt: datetime | None = None
    PurchasedAt: datetime | None = None
    Priority: int
    AutoTransferType: str
    AutoTransferAmount: float
    CreatedAt: datetime
    Milestones: list[MilestoneOut] = []
    MatchingRule: MatchingRuleOut | None = None
    ActiveChallenge: ChallengeOut | None = None


class ContributionCreate(BaseModel):
    Amount: float = Field(gt=0)
    Type: ContributionType = ContributionType.ChildDeposit
    Description: str | None = Field(default=None, max_length=500)


class GoalWithdrawRequest(BaseModel):
    Amount: float = Field(gt=0)
    Reason: str | None = Field(default=None, max_length=500)


class ContributionOut(BaseModel):
    Id: int
    GoalId: int
    ChildId: int
    Amount: float
    Type: str
    GoalBalanceAfter: float
    SourceTransactionId: int | None = None
    ParentMatchId: int | None = None
    Description: str | None = None
    CreatedByUserId: int | None = None
    CreatedAt: datetime


class GoalProgressOut(BaseModel):
    Goal: GoalOut
    Contribution: ContributionOut
    MatchContribution: ContributionOut | None = None
    BonusContributions: list[ContributionOut] = []
    MilestonesReached: list[MilestoneOut] = []
    ChallengeCompleted: bool = False
    ChallengeExpired: bool = False
    GoalCompleted: bool = False


class BudgetUpsert(BaseModel):
    Category: TransactionCategory
    Limit: float = Field(gt=0)
    Period: BudgetPeriod = BudgetPeriod.Weekly
    AlertThresholdPercent: int = Field(default=80, ge=0, le=100)
    EnforceLimit: bool = False


class BudgetOut(BaseModel):
    Id: int
    ChildId: int
    Category: str
    Limit: float
    Period: str
    AlertThresholdPercent: int
    EnforceLimit: bool
    UpdatedAt: datetime


class BudgetCheckRequest(BaseModel):
    Category: TransactionCategory
    Amount: float = Field(gt=0)


class BudgetCheckOut(BaseModel):
    Allowed: bool
    Message: str | None = None
    CurrentSpending: float
    Limit: float
    RemainingAfter: float
    IsWarning: bool


class BudgetStatusOut(BaseModel):
    Category: str
    Limit: float
    Period: str
    CurrentSpending: float
    Remaining: float
    PercentUsed: float
    Status: str
    PeriodStart: datetime
