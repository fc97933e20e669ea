from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

from ledger.models import Post, PostType, ReactionKind


class CreatePostRequest(BaseModel):
    content: str = Field(..., min_length=1)
    type: PostType = PostType.TEXT

    model_config = ConfigDict(json_schema_extra={
        "example": {"content": "Check this out: https://react.dev", "type": "link"}
    })


class ReactionRequest(BaseModel):
    kind: ReactionKind


class Campaign(BaseModel):
    post: Post
    spend: Decimal
    views_per_dollar: Optional[int] = None


class CampaignStats(BaseModel):
    total_spent: Decimal
    total_views: int
    sponsored_count: int
    campaigns: list[Campaign]


class SeedResponse(BaseModel):
    posts: list[Post]
    generated_by: str
