"""
Feed Package

Posts, reactions, simulated view growth, advertiser statistics and
LLM-generated demo posts.
"""

from .generator import PostGenerator
from .service import FeedService

__all__ = [
    "FeedService",
    "PostGenerator",
]
