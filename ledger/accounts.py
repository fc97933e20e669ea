import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from .errors import (
    AccountNotFoundError,
    AuthenticationError,
    EmailTakenError,
    InvalidAmountError,
    PermissionDeniedError,
)
from .models import Account, AdminUserUpdate, SessionResponse, UserRole
from .security import hash_password, new_session_token, verify_password
from .service import has_token_precision
from .storage import TOKEN_DECIMALS, InMemoryStorage, Storage

logger = logging.getLogger(__name__)

AVATAR_URL_TEMPLATE = "https://api.dicebear.com/7.x/avataaars/svg?seed={email}"
ADMIN_SEED_BALANCE = Decimal("10000")


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountService:
    def __init__(self, storage: Optional[Storage] = None):
        self.storage = storage or InMemoryStorage()

    def sign_up(self, email: str, password: str, role: UserRole = UserRole.USER) -> SessionResponse:
        email = _normalize_email(email)
        if self.storage.find_account_by_email(email):
            raise EmailTakenError("Email already taken")

        record = {
            "id": str(uuid4()),
            "email": email,
            "password_hash": hash_password(password),
            "role": role.value,
            "balance": Decimal("0"),
            "name": email.split("@")[0],
            "avatar_url": AVATAR_URL_TEMPLATE.format(email=email),
            "created_at": datetime.now(timezone.utc),
        }
        self.storage.insert_account(record)
        logger.info("Account %s created for %s", record["id"], email)
        return self._open_session(record)

    def sign_in(self, email: str, password: str) -> SessionResponse:
        record = self.storage.find_account_by_email(_normalize_email(email))
        if not record:
            raise AccountNotFoundError("User not found")
        if not record.get("password_hash") or not verify_password(password, record["password_hash"]):
            raise AuthenticationError("Invalid password")
        return self._open_session(record)

    def sign_out(self, token: str) -> None:
        self.storage.delete_session(token)

    def current_account(self, token: str) -> Account:
        account_id = self.storage.get_session(token)
        if not account_id:
            raise AuthenticationError("Session expired or invalid")
        return self.get_account(account_id)

    def get_account(self, account_id: str) -> Account:
        record = self.storage.get_account(account_id)
        if not record:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return Account(**record)

    def require_admin(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if not account.is_admin:
            raise PermissionDeniedError("Administrator access required")
        return account

    def list_accounts(self, admin_id: str) -> list[Account]:
        self.require_admin(admin_id)
        return [Account(**r) for r in self.storage.list_accounts()]

    def update_avatar(self, account_id: str, avatar_url: str) -> Account:
        record = self.storage.update_account(account_id, {"avatar_url": avatar_url})
        if not record:
            raise AccountNotFoundError(f"Account {account_id} not found")
        # posts carry a copy of the author's avatar
        self.storage.update_posts_by_user(account_id, {"author_avatar": avatar_url})
        return Account(**record)

    def admin_update_user(self, admin_id: str, account_id: str, patch: AdminUserUpdate) -> Account:
        self.require_admin(admin_id)

        fields = {}
        if patch.name is not None:
            fields["name"] = patch.name
        if patch.password:
            fields["password_hash"] = hash_password(patch.password)
        if patch.balance is not None:
            if patch.balance < 0:
                raise InvalidAmountError("Balance cannot be negative")
            if not has_token_precision(patch.balance):
                raise InvalidAmountError(f"Balance {patch.balance} has more than {TOKEN_DECIMALS} decimal places")
            fields["balance"] = patch.balance

        record = self.storage.update_account(account_id, fields)
        if not record:
            raise AccountNotFoundError(f"Account {account_id} not found")
        logger.info("Admin %s updated account %s: %s", admin_id, account_id, sorted(fields))
        return Account(**record)

    def ensure_admin(self, email: str, password: str) -> Account:
        """Create the seed administrator unless some administrator already exists."""
        for record in self.storage.list_accounts():
            if record["role"] == UserRole.ADMIN.value:
                return Account(**record)

        existing = self.storage.find_account_by_email(_normalize_email(email))
        if existing:
            record = self.storage.update_account(existing["id"], {"role": UserRole.ADMIN.value})
            logger.info("Promoted %s to administrator", email)
            return Account(**record)

        session = self.sign_up(email, password, role=UserRole.ADMIN)
        record = self.storage.update_account(session.account.id, {"balance": ADMIN_SEED_BALANCE})
        self.storage.delete_session(session.token)
        logger.info("Seeded administrator %s", email)
        return Account(**record)

    def _open_session(self, record: dict) -> SessionResponse:
        token = new_session_token()
        self.storage.put_session(token, record["id"])
        return SessionResponse(account=Account(**record), token=token)
