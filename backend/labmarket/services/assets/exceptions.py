class AssetError(Exception):
    """Base exception for asset ledger errors."""

    def __init__(self, message: str, account: str | None = None):
        super().__init__(message)
        self.account = account


class InsufficientBalanceError(AssetError):
    """Sender balance too low."""

    pass


class InsufficientAllowanceError(AssetError):
    """Spender not approved for the amount."""

    pass


class InvalidAmountError(AssetError):
    """Negative or non-integer amount."""

    pass
