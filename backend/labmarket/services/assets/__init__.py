from .client import AssetClient, AssetLedger, SupportsSnapshot, create_asset_client
from .config import AssetConfig
from .exceptions import (
    AssetError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    InvalidAmountError,
)
from .models import Allowance, TokenState
from .token import InMemoryToken

__all__ = [
    "AssetClient",
    "AssetLedger",
    "SupportsSnapshot",
    "create_asset_client",
    "AssetConfig",
    "AssetError",
    "InsufficientAllowanceError",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "Allowance",
    "TokenState",
    "InMemoryToken",
]
