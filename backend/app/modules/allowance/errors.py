class AllowanceError(ValueError):
    pass


class NotFoundError(AllowanceError):
    pass


class AccessDeniedError(AllowanceError):
    pass


class InsufficientBalanceError(AllowanceError):
    pass


class InsufficientGoalBalanceError(InsufficientBalanceError):
    pass


class InvalidAmountError(AllowanceError):
    pass


class InvalidStateError(AllowanceError):
    pass


class BudgetExceededError(AllowanceError):
    def __init__(self, result):
        super().__init__(result.Message or "Budget limit exceeded")
        self.Result = result
