import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import uuid4

from .errors import (
    AccountNotFoundError,
    BelowMinimumWithdrawalError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    PostNotFoundError,
    TransactionNotFoundError,
)
from .models import (
    Account,
    LedgerResponse,
    NetworkType,
    Post,
    PricingSettings,
    SettingsPatch,
    SponsorResponse,
    Transaction,
    TransactionStatus,
    TransactionType,
    UserRole,
)
from .pricing import estimate_views
from .storage import TOKEN_DECIMALS, InMemoryStorage, Storage

logger = logging.getLogger(__name__)


def has_token_precision(amount: Decimal) -> bool:
    """True when the amount fits in whole units of the smallest USDT denomination."""
    return amount.normalize().as_tuple().exponent >= -TOKEN_DECIMALS


def parse_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError(f"Amount must be positive, got {value}")
    if not has_token_precision(amount):
        raise InvalidAmountError(f"Amount {value} has more than {TOKEN_DECIMALS} decimal places")
    return amount


class LedgerService:
    """Balance mutations and the transaction log.

    Every balance change goes through ``Storage.adjust_balance``; the
    transaction insert that accompanies it is a separate write.
    """

    def __init__(self, storage: Optional[Storage] = None):
        self.storage = storage or InMemoryStorage()

    def load_settings(self) -> PricingSettings:
        record = self.storage.load_settings()
        if record:
            return PricingSettings(**record)
        settings = PricingSettings()
        self.storage.save_settings(settings.model_dump())
        return settings

    def update_settings(self, admin_id: str, current: PricingSettings, patch: SettingsPatch) -> PricingSettings:
        self._require_admin(admin_id)
        merged = current.model_copy(update=patch.model_dump(exclude_none=True))
        self.storage.save_settings(merged.model_dump())
        logger.info("Pricing settings updated by %s: %s", admin_id, patch.model_dump(exclude_none=True))
        return merged

    def deposit(self, account_id: str, amount, network: NetworkType) -> LedgerResponse:
        amount = parse_amount(amount)
        network = NetworkType(network)
        self._get_account(account_id)

        tx = self._append(
            account_id,
            TransactionType.DEPOSIT,
            amount,
            TransactionStatus.COMPLETED,
            network=network,
            tx_hash="0x" + secrets.token_hex(32),
        )
        if self.storage.adjust_balance(account_id, amount) is None:
            raise AccountNotFoundError(f"Account {account_id} not found")

        logger.info("Deposit %s %s credited to %s", amount, network.value, account_id)
        return LedgerResponse(
            account=self._get_account(account_id),
            transaction=tx,
            message="Deposit completed",
        )

    def request_withdrawal(
        self, account_id: str, amount, network: NetworkType, settings: PricingSettings
    ) -> LedgerResponse:
        amount = parse_amount(amount)
        network = NetworkType(network)
        account = self._get_account(account_id)

        if amount > account.balance:
            raise InsufficientBalanceError("Insufficient balance")
        if amount < settings.min_withdraw:
            raise BelowMinimumWithdrawalError(f"Minimum withdraw is {settings.min_withdraw} USD")

        # funds are held from the moment of the request
        if self.storage.adjust_balance(account_id, -amount) is None:
            raise InsufficientBalanceError("Insufficient balance")

        tx = self._append(account_id, TransactionType.WITHDRAW, amount, TransactionStatus.PENDING, network=network)
        logger.info("Withdrawal %s of %s requested by %s", tx.id, amount, account_id)
        return LedgerResponse(
            account=self._get_account(account_id),
            transaction=tx,
            message="Withdrawal requested, awaiting approval",
        )

    def get_pending_withdrawals(self, admin_id: str) -> list[Transaction]:
        self._require_admin(admin_id)
        return [
            Transaction(**t)
            for t in self.storage.list_transactions(
                tx_type=TransactionType.WITHDRAW.value, status=TransactionStatus.PENDING.value
            )
        ]

    def settle_withdrawal(self, admin_id: str, tx_id: str, approved: bool) -> Transaction:
        self._require_admin(admin_id)

        tx = self.get_transaction(tx_id)
        if not tx.can_settle():
            raise InvalidStateTransitionError(
                f"Cannot settle {tx.type.value} transaction in {tx.status.value} state"
            )

        new_status = TransactionStatus.COMPLETED if approved else TransactionStatus.REJECTED
        if not self.storage.update_transaction_status(tx_id, TransactionStatus.PENDING.value, new_status.value):
            raise InvalidStateTransitionError(f"Transaction {tx_id} was already settled")

        if not approved:
            if self.storage.adjust_balance(tx.user_id, tx.amount) is None:
                raise AccountNotFoundError(f"Account {tx.user_id} not found")
            logger.info("Withdrawal %s rejected, %s refunded to %s", tx_id, tx.amount, tx.user_id)
        else:
            logger.info("Withdrawal %s approved for %s", tx_id, tx.user_id)

        return self.get_transaction(tx_id)

    def sponsor_post(
        self, account_id: str, post_id: str, amount, settings: PricingSettings
    ) -> SponsorResponse:
        amount = parse_amount(amount)
        estimate = estimate_views(amount, settings)

        post = self.storage.get_post(post_id)
        if not post:
            raise PostNotFoundError(f"Post {post_id} not found")
        if post["user_id"] != account_id:
            raise PermissionDeniedError("Only the author can sponsor a post")
        account = self._get_account(account_id)
        if amount > account.balance:
            raise InsufficientBalanceError("Insufficient balance")

        if self.storage.adjust_balance(account_id, -amount) is None:
            raise InsufficientBalanceError("Insufficient balance")

        tx = self._append(
            account_id, TransactionType.AD_SPEND, amount, TransactionStatus.COMPLETED, post_id=post_id
        )
        self.storage.update_post(post_id, {"sponsored": True})
        self.storage.increment_post_field(post_id, "views", estimate.immediate_boost)

        logger.info(
            "Post %s sponsored by %s for %s (+%d views now, ~%d estimated)",
            post_id, account_id, amount, estimate.immediate_boost, estimate.estimated_views,
        )
        return SponsorResponse(
            account=self._get_account(account_id),
            transaction=tx,
            post=Post(**self.storage.get_post(post_id)),
            immediate_boost=estimate.immediate_boost,
            message="Post sponsored",
        )

    def get_transaction(self, tx_id: str) -> Transaction:
        record = self.storage.get_transaction(tx_id)
        if not record:
            raise TransactionNotFoundError(f"Transaction {tx_id} not found")
        return Transaction(**record)

    def get_transactions(self, account_id: str) -> list[Transaction]:
        txs = [Transaction(**t) for t in self.storage.list_transactions(user_id=account_id)]
        txs.sort(key=lambda t: t.created_at, reverse=True)
        return txs

    def get_balance(self, account_id: str) -> Decimal:
        return self._get_account(account_id).balance

    def _append(
        self,
        account_id: str,
        tx_type: TransactionType,
        amount: Decimal,
        status: TransactionStatus,
        network: Optional[NetworkType] = None,
        tx_hash: Optional[str] = None,
        post_id: Optional[str] = None,
    ) -> Transaction:
        record = {
            "id": str(uuid4()),
            "user_id": account_id,
            "type": tx_type.value,
            "amount": amount,
            "status": status.value,
            "network": network.value if network else None,
            "tx_hash": tx_hash,
            "post_id": post_id,
            "created_at": datetime.now(timezone.utc),
        }
        self.storage.insert_transaction(record)
        return Transaction(**record)

    def _get_account(self, account_id: str) -> Account:
        record = self.storage.get_account(account_id)
        if not record:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return Account(**record)

    def _require_admin(self, account_id: str) -> Account:
        account = self._get_account(account_id)
        if account.role != UserRole.ADMIN:
            raise PermissionDeniedError("Administrator access required")
        return account
