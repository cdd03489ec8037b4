"""Point wallets charged per broadcast."""

from voicecast.modules.wallet.models import TransactionType, Wallet, WalletTransaction
from voicecast.modules.wallet.service import (
    InsufficientBalanceError,
    WalletService,
    WalletServiceError,
)

__all__ = [
    "TransactionType",
    "Wallet",
    "WalletTransaction",
    "InsufficientBalanceError",
    "WalletService",
    "WalletServiceError",
]
