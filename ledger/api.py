import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from feed.generator import PostGenerator
from feed.models import CampaignStats, CreatePostRequest, ReactionRequest, SeedResponse
from feed.service import FeedService

from .accounts import AccountService
from .config import AppConfig, configure_logging, load_config
from .errors import (
    AuthenticationError,
    EmailTakenError,
    InvalidStateTransitionError,
    LedgerServiceError,
    NotFoundError,
    PermissionDeniedError,
    StoreError,
    ValidationFailedError,
)
from .models import (
    Account,
    AdminUserUpdate,
    AvatarRequest,
    DepositRequest,
    LedgerResponse,
    Post,
    PricingSettings,
    SessionResponse,
    SettingsPatch,
    SettleWithdrawalRequest,
    SignInRequest,
    SignUpRequest,
    SponsorRequest,
    SponsorResponse,
    Transaction,
    ViewEstimate,
    WithdrawRequest,
)
from .pricing import estimate_views
from .service import LedgerService, parse_amount
from .storage import Storage, create_storage

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationFailedError, status.HTTP_400_BAD_REQUEST),
    (InvalidStateTransitionError, status.HTTP_400_BAD_REQUEST),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (EmailTakenError, status.HTTP_409_CONFLICT),
    (StoreError, status.HTTP_502_BAD_GATEWAY),
)


@dataclass
class Services:
    accounts: AccountService
    ledger: LedgerService
    feed: FeedService
    settings: PricingSettings


def get_services(request: Request) -> Services:
    return request.app.state.services


bearer = HTTPBearer(auto_error=False)


def current_account(
    services: Services = Depends(get_services),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Account:
    if credentials is None:
        raise AuthenticationError("Not signed in")
    return services.accounts.current_account(credentials.credentials)


def current_admin(
    services: Services = Depends(get_services),
    account: Account = Depends(current_account),
) -> Account:
    return services.accounts.require_admin(account.id)


router = APIRouter()


@router.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "tapfeed"}


@router.post("/auth/signup", response_model=SessionResponse, status_code=status.HTTP_201_CREATED, tags=["Auth"])
def sign_up(request: SignUpRequest, services: Services = Depends(get_services)) -> SessionResponse:
    return services.accounts.sign_up(request.email, request.password)


@router.post("/auth/signin", response_model=SessionResponse, tags=["Auth"])
def sign_in(request: SignInRequest, services: Services = Depends(get_services)) -> SessionResponse:
    return services.accounts.sign_in(request.email, request.password)


@router.post("/auth/signout", status_code=status.HTTP_204_NO_CONTENT, tags=["Auth"])
def sign_out(
    services: Services = Depends(get_services),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> None:
    if credentials is not None:
        services.accounts.sign_out(credentials.credentials)


@router.get("/me", response_model=Account, tags=["Users"])
def me(account: Account = Depends(current_account)) -> Account:
    return account


@router.put("/me/avatar", response_model=Account, tags=["Users"])
def update_avatar(
    request: AvatarRequest,
    services: Services = Depends(get_services),
    account: Account = Depends(current_account),
) -> Account:
    return services.accounts.update_avatar(account.id, request.avatar_url)


@router.get("/me/transactions", response_model=list[Transaction], tags=["Wallet"])
def my_transactions(
    services: Services = Depends(get_services),
    account: Account = Depends(current_account),
) -> list[Transaction]:
    return services.ledger.get_transactions(account.id)


@router.get("/me/posts", response_model=list[Post], tags=["Posts"])
def my_posts(
    services: Services = Depends(get_services),
    account: Account = Depends(current_account),
) -> list[Post]:
    return services.feed.get_user_posts(account.id)


@router.get("/me/campaigns", response_model=CampaignStats, tags=["Ads"])
def my_campaigns(
    services: Services = Depends(get_services),
    account: Account = Depends(current_account),
) -> CampaignStats:
    return services.feed.campaign_stats(account.id)


@router.post("/wallet/deposit", response_model=LedgerResponse, tags=["Wallet"])
def deposit(
    request: DepositRequest,
    services: Services = Depends(get_services),
    account: Account = Depends(current_account),
) -> LedgerResponse:
    return services.ledger.deposit(account.id, request.amount, request.network)


@router.post("/wallet/withdraw", response_model=LedgerResponse, tags=["Wallet"])
def withdraw(
    request: WithdrawRequest,
    services: Services = Depends(get_services),
    account: Account = Depends(current_account),
) -> LedgerResponse:
    return services.ledger.request_withdrawal(account.id, request.amount, request.network, services.settings)


@router.get("/posts", response_model=list[Post], tags=["Posts"])
def get_feed(services: Services = Depends(get_services)) -> list[Post]:
    return services.feed.get_feed()


@router.post("/posts", response_model=Post, status_code=status.HTTP_201_CREATED, tags=["Posts"])
def create_post(
    request: CreatePostRequest,
    services: Services = Depends(get_services),
    account: Account = Depends(current_account),
) -> Post:
    return services.feed.create_post(account.id, request.content, request.type)


@router.post("/posts/demo", response_model=SeedResponse, status_code=status.HTTP_201_CREATED, tags=["Posts"])
def seed_demo_posts(
    services: Services = Depends(get_services),
    account: Account = Depends(current_account),
) -> SeedResponse:
    return services.feed.seed_demo_posts(account.id)


@router.post("/posts/{post_id}/react", response_model=Post, tags=["Posts"])
def react(post_id: str, request: ReactionRequest, services: Services = Depends(get_services)) -> Post:
    return services.feed.react(post_id, request.kind)


@router.post("/posts/{post_id}/sponsor", response_model=SponsorResponse, tags=["Ads"])
def sponsor_post(
    post_id: str,
    request: SponsorRequest,
    services: Services = Depends(get_services),
    account: Account = Depends(current_account),
) -> SponsorResponse:
    return services.ledger.sponsor_post(account.id, post_id, request.amount, services.settings)


@router.get("/sponsorship/estimate", response_model=ViewEstimate, tags=["Ads"])
def estimate(amount: Decimal, services: Services = Depends(get_services)) -> ViewEstimate:
    return estimate_views(parse_amount(amount), services.settings)


@router.get("/settings", response_model=PricingSettings, tags=["System"])
def get_settings(services: Services = Depends(get_services)) -> PricingSettings:
    return services.settings


@router.get("/admin/users", response_model=list[Account], tags=["Admin"])
def list_users(
    services: Services = Depends(get_services),
    admin: Account = Depends(current_admin),
) -> list[Account]:
    return services.accounts.list_accounts(admin.id)


@router.patch("/admin/users/{account_id}", response_model=Account, tags=["Admin"])
def edit_user(
    account_id: str,
    request: AdminUserUpdate,
    services: Services = Depends(get_services),
    admin: Account = Depends(current_admin),
) -> Account:
    return services.accounts.admin_update_user(admin.id, account_id, request)


@router.get("/admin/withdrawals", response_model=list[Transaction], tags=["Admin"])
def pending_withdrawals(
    services: Services = Depends(get_services),
    admin: Account = Depends(current_admin),
) -> list[Transaction]:
    return services.ledger.get_pending_withdrawals(admin.id)


@router.post("/admin/withdrawals/{tx_id}", response_model=Transaction, tags=["Admin"])
def settle_withdrawal(
    tx_id: str,
    request: SettleWithdrawalRequest,
    services: Services = Depends(get_services),
    admin: Account = Depends(current_admin),
) -> Transaction:
    return services.ledger.settle_withdrawal(admin.id, tx_id, request.approved)


@router.patch("/admin/settings", response_model=PricingSettings, tags=["Admin"])
def update_settings(
    request: SettingsPatch,
    services: Services = Depends(get_services),
    admin: Account = Depends(current_admin),
) -> PricingSettings:
    services.settings = services.ledger.update_settings(admin.id, services.settings, request)
    return services.settings


async def _handle_service_error(request: Request, exc: LedgerServiceError) -> JSONResponse:
    code = status.HTTP_400_BAD_REQUEST
    for error_type, error_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            code = error_code
            break
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


def create_app(
    config: Optional[AppConfig] = None,
    storage: Optional[Storage] = None,
    generator: Optional[PostGenerator] = None,
    root_path: str = "",
) -> FastAPI:
    config = config or load_config()
    configure_logging(config.log_level)
    storage = storage or create_storage(config.storage, config.db_path)

    accounts = AccountService(storage)
    accounts.ensure_admin(config.admin_email, config.admin_password)
    ledger = LedgerService(storage)
    feed = FeedService(
        storage,
        generator=generator or PostGenerator(api_key=config.groq_api_key, model=config.groq_model),
    )

    app = FastAPI(
        title="TapFeed API",
        description="Social feed with a USDT wallet, sponsored posts and admin-settled withdrawals",
        version="1.0.0",
        root_path=root_path,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # settings are read once here; PATCH /admin/settings is the only writer
    app.state.services = Services(accounts=accounts, ledger=ledger, feed=feed, settings=ledger.load_settings())
    app.add_exception_handler(LedgerServiceError, _handle_service_error)
    app.include_router(router)
    logger.info("TapFeed started with %s", type(storage).__name__)
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
