"""
SwiftRemit error types.

Every failure aborts the whole operation with no partial state change.
Each error carries a stable integer ``code`` so hosts can map failures
without parsing messages.
"""


class SwiftRemitError(Exception):
    """Base error for all SwiftRemit operations."""
    code = 0


# Configuration errors
class ConfigError(SwiftRemitError):
    """Base error for contract configuration problems."""
    pass


class AlreadyInitializedError(ConfigError):
    """Contract was already initialized."""
    code = 1


class NotInitializedError(ConfigError):
    """Operation requires an initialized contract."""
    code = 2


class InvalidConfigurationError(ConfigError):
    """Fee rate or limit outside its allowed range."""
    code = 4


# Remittance errors
class RemittanceError(SwiftRemitError):
    """Base error for remittance lifecycle violations."""
    pass


class InvalidAmountError(RemittanceError):
    """Principal must be a positive integer."""
    code = 3

    def __init__(self, amount: int):
        self.amount = amount
        super().__init__(f"Amount must be positive, got {amount}")


class AgentNotRegisteredError(RemittanceError):
    """Target agent is not in the agent registry."""
    code = 5

    def __init__(self, agent: str):
        self.agent = agent
        super().__init__(f"Agent not registered: {agent}")


class NotFoundError(RemittanceError):
    """Unknown remittance id."""
    code = 6

    def __init__(self, remittance_id: int):
        self.remittance_id = remittance_id
        super().__init__(f"Remittance not found: {remittance_id}")


class InvalidStatusError(RemittanceError):
    """Transition attempted from a terminal or wrong state."""
    code = 7

    def __init__(self, remittance_id: int, status: str):
        self.remittance_id = remittance_id
        self.status = status
        super().__init__(f"Remittance {remittance_id} is {status}, expected pending")


class AmountOverflowError(RemittanceError):
    """Arithmetic result exceeds the representable amount range."""
    code = 8


# Authorization errors
class AuthorizationError(SwiftRemitError):
    """Base error for caller identity problems."""
    pass


class UnauthorizedError(AuthorizationError):
    """Caller failed to prove the required identity."""
    code = 10

    def __init__(self, expected: str, actual: str | None, reason: str | None = None):
        self.expected = expected
        self.actual = actual
        self.reason = reason
        if reason:
            super().__init__(f"Authorization rejected for {expected}: {reason}")
        else:
            super().__init__(f"Caller {actual or '<anonymous>'} is not {expected}")


class InvalidAddressError(AuthorizationError):
    """Identity is not a well-formed address."""
    code = 11


# Transfer errors
class TransferError(SwiftRemitError):
    """Base error for value-transfer failures."""
    pass


class TransferFailedError(TransferError):
    """The value-transfer collaborator declined the movement of funds.

    Recoverable: a remittance whose confirm or cancel failed this way
    stays pending and the call may be retried.
    """
    code = 12

    def __init__(self, message: str, from_: str | None = None, to: str | None = None, amount: int = 0):
        self.from_ = from_
        self.to = to
        self.amount = amount
        super().__init__(message)


# Limit errors
class LimitError(SwiftRemitError):
    """Base error for send limit violations."""
    pass


class DailySendLimitExceededError(LimitError):
    """Amount would exceed the sender's rolling 24-hour limit."""
    code = 13

    def __init__(self, amount: int, remaining: int):
        self.amount = amount
        self.remaining = remaining
        super().__init__(f"Amount {amount} exceeds remaining daily send limit {remaining}")
