"""
Unit Tests for accounts, sessions and admin user edits
"""

import pytest
from decimal import Decimal

from feed.service import FeedService
from ledger.accounts import AccountService
from ledger.errors import (
    AccountNotFoundError,
    AuthenticationError,
    EmailTakenError,
    InvalidAmountError,
    PermissionDeniedError,
)
from ledger.models import AdminUserUpdate, UserRole
from ledger.security import hash_password, verify_password
from ledger.storage import InMemoryStorage


class TestSignUp:

    def test_sign_up_defaults(self):
        """New accounts start empty with a derived name and avatar."""
        service = AccountService()

        session = service.sign_up("Alice@Example.com", "pw")

        account = session.account
        assert account.email == "alice@example.com"
        assert account.name == "alice"
        assert account.role == UserRole.USER
        assert account.balance == Decimal("0")
        assert account.avatar_url == "https://api.dicebear.com/7.x/avataaars/svg?seed=alice@example.com"
        assert session.token

    def test_duplicate_email_rejected(self):
        service = AccountService()
        service.sign_up("bob@example.com", "pw")

        with pytest.raises(EmailTakenError):
            service.sign_up("BOB@example.com", "other")

    def test_password_not_stored_in_clear(self):
        storage = InMemoryStorage()
        service = AccountService(storage)

        session = service.sign_up("carol@example.com", "s3cret")

        stored = storage.get_account(session.account.id)["password_hash"]
        assert "s3cret" not in stored
        assert stored.startswith("pbkdf2$")


class TestSignIn:

    def test_sign_in_and_session_lookup(self):
        service = AccountService()
        created = service.sign_up("dave@example.com", "pw")

        session = service.sign_in("dave@example.com", "pw")

        assert session.account.id == created.account.id
        assert service.current_account(session.token).id == created.account.id

    def test_unknown_user(self):
        service = AccountService()

        with pytest.raises(AccountNotFoundError, match="User not found"):
            service.sign_in("nobody@example.com", "pw")

    def test_wrong_password(self):
        service = AccountService()
        service.sign_up("erin@example.com", "right")

        with pytest.raises(AuthenticationError, match="Invalid password"):
            service.sign_in("erin@example.com", "wrong")

    def test_sign_out_invalidates_token(self):
        service = AccountService()
        session = service.sign_up("frank@example.com", "pw")

        service.sign_out(session.token)

        with pytest.raises(AuthenticationError):
            service.current_account(session.token)


class TestAdmin:

    def test_ensure_admin_seeds_once(self):
        storage = InMemoryStorage()
        service = AccountService(storage)

        admin = service.ensure_admin("admin@admin.com", "666666")
        again = service.ensure_admin("admin@admin.com", "666666")

        assert admin.role == UserRole.ADMIN
        assert admin.balance == Decimal("10000")
        assert again.id == admin.id
        assert len(storage.list_accounts()) == 1
        assert service.sign_in("admin@admin.com", "666666").account.is_admin

    def test_admin_edits_user(self):
        service = AccountService()
        admin = service.ensure_admin("admin@admin.com", "666666")
        user = service.sign_up("gina@example.com", "old").account

        updated = service.admin_update_user(
            admin.id, user.id, AdminUserUpdate(name="Gina", password="new", balance=Decimal("42"))
        )

        assert updated.name == "Gina"
        assert updated.balance == Decimal("42")
        assert updated.email == "gina@example.com"
        assert service.sign_in("gina@example.com", "new").account.id == user.id

    def test_admin_cannot_set_negative_balance(self):
        service = AccountService()
        admin = service.ensure_admin("admin@admin.com", "666666")
        user = service.sign_up("hank@example.com", "pw").account

        with pytest.raises(InvalidAmountError):
            service.admin_update_user(admin.id, user.id, AdminUserUpdate(balance=Decimal("-1")))

    def test_non_admin_cannot_edit_or_list(self):
        service = AccountService()
        user = service.sign_up("ivy@example.com", "pw").account

        with pytest.raises(PermissionDeniedError):
            service.admin_update_user(user.id, user.id, AdminUserUpdate(balance=Decimal("1000")))
        with pytest.raises(PermissionDeniedError):
            service.list_accounts(user.id)

    def test_edit_unknown_user(self):
        service = AccountService()
        admin = service.ensure_admin("admin@admin.com", "666666")

        with pytest.raises(AccountNotFoundError):
            service.admin_update_user(admin.id, "missing", AdminUserUpdate(name="x"))


class TestAvatar:

    def test_avatar_propagates_to_posts(self):
        storage = InMemoryStorage()
        accounts = AccountService(storage)
        feed = FeedService(storage)
        user = accounts.sign_up("jack@example.com", "pw").account
        post = feed.create_post(user.id, "first!")

        accounts.update_avatar(user.id, "data:image/png;base64,AAAA")

        assert accounts.get_account(user.id).avatar_url == "data:image/png;base64,AAAA"
        assert feed.get_post(post.id).author_avatar == "data:image/png;base64,AAAA"


class TestPasswordHashing:

    def test_round_trip_and_mismatch(self):
        stored = hash_password("pw", iterations=1000)

        assert verify_password("pw", stored)
        assert not verify_password("nope", stored)

    def test_garbage_hash_never_verifies(self):
        assert not verify_password("pw", "not-a-hash")
        assert not verify_password("pw", "sha1$1$abc$def")
