import logging
import random
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from ledger.errors import AccountNotFoundError, PostNotFoundError, ValidationFailedError
from ledger.models import Post, PostType, ReactionKind, TransactionType
from ledger.storage import InMemoryStorage, Storage

from .generator import PostGenerator
from .models import Campaign, CampaignStats, SeedResponse

logger = logging.getLogger(__name__)

LINK_PATTERN = re.compile(r"https?://", re.IGNORECASE)

# Simulated traffic per feed refresh: (chance of a bump, min views, max views)
SPONSORED_GROWTH = (0.7, 100, 599)
ORGANIC_GROWTH = (0.2, 1, 5)


class FeedService:
    def __init__(
        self,
        storage: Optional[Storage] = None,
        generator: Optional[PostGenerator] = None,
        rng: Optional[random.Random] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.generator = generator
        self.rng = rng or random.Random()

    def create_post(self, account_id: str, content: str, post_type: PostType = PostType.TEXT) -> Post:
        content = content.strip()
        if not content:
            raise ValidationFailedError("Post content cannot be empty")

        author = self.storage.get_account(account_id)
        if not author:
            raise AccountNotFoundError(f"Account {account_id} not found")

        record = {
            "id": str(uuid4()),
            "user_id": account_id,
            "author_email": author["email"],
            "author_avatar": author.get("avatar_url"),
            "content": content,
            "type": PostType(post_type).value,
            "likes": 0,
            "hearts": 0,
            "hahas": 0,
            "views": 0,
            "sponsored": False,
            "created_at": datetime.now(timezone.utc),
        }
        self.storage.insert_post(record)
        return Post(**record)

    def get_post(self, post_id: str) -> Post:
        record = self.storage.get_post(post_id)
        if not record:
            raise PostNotFoundError(f"Post {post_id} not found")
        return Post(**record)

    def get_feed(self) -> list[Post]:
        self.grow_views()
        return [Post(**p) for p in self.storage.list_posts()]

    def grow_views(self) -> int:
        """One step of simulated traffic. Returns the number of views added."""
        added = 0
        for post in self.storage.list_posts():
            chance, low, high = SPONSORED_GROWTH if post["sponsored"] else ORGANIC_GROWTH
            if self.rng.random() < chance:
                bump = self.rng.randint(low, high)
                self.storage.increment_post_field(post["id"], "views", bump)
                added += bump
        return added

    def get_user_posts(self, account_id: str) -> list[Post]:
        return [Post(**p) for p in self.storage.list_posts(user_id=account_id)]

    def react(self, post_id: str, kind: ReactionKind) -> Post:
        kind = ReactionKind(kind)
        if self.storage.increment_post_field(post_id, kind.value) is None:
            raise PostNotFoundError(f"Post {post_id} not found")
        return self.get_post(post_id)

    def campaign_stats(self, account_id: str) -> CampaignStats:
        sponsored = [Post(**p) for p in self.storage.list_posts(user_id=account_id) if p["sponsored"]]
        ad_spends = self.storage.list_transactions(user_id=account_id, tx_type=TransactionType.AD_SPEND.value)

        spend_by_post: dict[str, Decimal] = {}
        for tx in ad_spends:
            if tx.get("post_id"):
                spend_by_post[tx["post_id"]] = spend_by_post.get(tx["post_id"], Decimal("0")) + tx["amount"]

        campaigns = []
        for post in sponsored:
            spend = spend_by_post.get(post.id, Decimal("0"))
            campaigns.append(Campaign(
                post=post,
                spend=spend,
                views_per_dollar=round(post.views / spend) if spend > 0 else None,
            ))

        return CampaignStats(
            total_spent=sum((tx["amount"] for tx in ad_spends), Decimal("0")),
            total_views=sum(p.views for p in sponsored),
            sponsored_count=len(sponsored),
            campaigns=campaigns,
        )

    def seed_demo_posts(self, account_id: str) -> SeedResponse:
        generator = self.generator or PostGenerator()
        texts = generator.generate_sample_posts()
        posts = [
            self.create_post(account_id, text, PostType.LINK if LINK_PATTERN.search(text) else PostType.TEXT)
            for text in texts
        ]
        logger.info("Seeded %d demo posts for %s", len(posts), account_id)
        return SeedResponse(posts=posts, generated_by=generator.last_source or "fallback")
