from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    AD_SPEND = "AD_SPEND"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class NetworkType(str, Enum):
    TRC20 = "TRC20"
    ERC20 = "ERC20"
    BEP20 = "BEP20"


class Account(BaseModel):
    id: str
    email: str
    role: UserRole = UserRole.USER
    balance: Decimal = Decimal("0")
    name: str
    avatar_url: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class Transaction(BaseModel):
    id: str
    user_id: str
    type: TransactionType
    amount: Decimal
    status: TransactionStatus
    network: Optional[NetworkType] = None
    tx_hash: Optional[str] = None
    post_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def can_settle(self) -> bool:
        return self.type == TransactionType.WITHDRAW and self.status == TransactionStatus.PENDING


class PricingSettings(BaseModel):
    ad_cost_per_100k_views: Decimal = Decimal("0.1")
    min_withdraw: Decimal = Decimal("50")
    admin_wallet_address: str = "0xAdminWalletAddress123456789"

    model_config = ConfigDict(frozen=True)


class SettingsPatch(BaseModel):
    ad_cost_per_100k_views: Optional[Decimal] = None
    min_withdraw: Optional[Decimal] = None
    admin_wallet_address: Optional[str] = None


class SignUpRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)

    model_config = ConfigDict(json_schema_extra={
        "example": {"email": "alice@example.com", "password": "hunter2"}
    })


class SignInRequest(BaseModel):
    email: str
    password: str


class SessionResponse(BaseModel):
    account: Account
    token: str


class AvatarRequest(BaseModel):
    avatar_url: str


class AdminUserUpdate(BaseModel):
    name: Optional[str] = None
    password: Optional[str] = None
    balance: Optional[Decimal] = None


class DepositRequest(BaseModel):
    amount: Decimal
    network: NetworkType = NetworkType.TRC20

    model_config = ConfigDict(json_schema_extra={
        "example": {"amount": 100.00, "network": "TRC20"}
    })


class WithdrawRequest(BaseModel):
    amount: Decimal
    network: NetworkType = NetworkType.TRC20


class SponsorRequest(BaseModel):
    amount: Decimal


class SettleWithdrawalRequest(BaseModel):
    approved: bool


class LedgerResponse(BaseModel):
    account: Account
    transaction: Optional[Transaction] = None
    message: str


class ViewEstimate(BaseModel):
    amount: Decimal
    estimated_views: int
    immediate_boost: int
    rate: Decimal


class PostType(str, Enum):
    TEXT = "text"
    LINK = "link"


class ReactionKind(str, Enum):
    LIKES = "likes"
    HEARTS = "hearts"
    HAHAS = "hahas"


class Post(BaseModel):
    id: str
    user_id: str
    author_email: str = ""
    author_avatar: Optional[str] = None
    content: str
    type: PostType = PostType.TEXT
    likes: int = 0
    hearts: int = 0
    hahas: int = 0
    views: int = 0
    sponsored: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SponsorResponse(BaseModel):
    account: Account
    transaction: Transaction
    post: Post
    immediate_boost: int
    message: str
