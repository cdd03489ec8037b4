"""Wallet service used by the broadcast engine to charge senders.

Every write participates in the caller's open transaction: nothing here
commits, so a failed fan-out rolls the debit back together with the
broadcast rows.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voicecast.modules.wallet.models import TransactionType, Wallet, WalletTransaction

logger = logging.getLogger(__name__)


class WalletServiceError(Exception):
    """Base exception for wallet errors."""
    pass


class InsufficientBalanceError(WalletServiceError):
    """Raised when a withdrawal exceeds the current balance."""

    def __init__(self, balance: int, amount: int):
        self.balance = balance
        self.amount = amount
        super().__init__(f"Insufficient balance: {balance} < {amount}")


class WalletService:
    """Balance reads and transactional debits/credits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_wallet(self, user_id: uuid.UUID, for_update: bool = False) -> Optional[Wallet]:
        query = select(Wallet).where(Wallet.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_balance(self, user_id: uuid.UUID) -> int:
        wallet = await self._get_wallet(user_id)
        return wallet.balance if wallet else 0

    async def deposit(self, user_id: uuid.UUID, amount: int, description: str) -> Wallet:
        """Credit points, creating the wallet on first use."""
        if amount <= 0:
            raise WalletServiceError("Deposit amount must be positive")

        wallet = await self._get_wallet(user_id, for_update=True)
        if wallet is None:
            wallet = Wallet(user_id=user_id, balance=0)
            self.session.add(wallet)
            await self.session.flush()

        wallet.balance += amount
        self.session.add(WalletTransaction(
            wallet_id=wallet.id,
            amount=amount,
            transaction_type=TransactionType.DEPOSIT.value,
            description=description,
        ))
        await self.session.flush()
        return wallet

    async def withdraw(self, user_id: uuid.UUID, amount: int, description: str) -> Wallet:
        """Debit points inside the caller's transaction.

        Raises:
            InsufficientBalanceError: If the balance is lower than ``amount``
        """
        if amount <= 0:
            raise WalletServiceError("Withdrawal amount must be positive")

        wallet = await self._get_wallet(user_id, for_update=True)
        balance = wallet.balance if wallet else 0
        if wallet is None or balance < amount:
            raise InsufficientBalanceError(balance, amount)

        wallet.balance -= amount
        self.session.add(WalletTransaction(
            wallet_id=wallet.id,
            amount=amount,
            transaction_type=TransactionType.WITHDRAWAL.value,
            description=description,
        ))
        await self.session.flush()
        logger.debug(f"Withdrew {amount} points from user {user_id}")
        return wallet
