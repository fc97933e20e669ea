import json
import logging
import os
import re
from typing import Optional

from groq import Groq

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.3-70b-versatile"

SYSTEM_PROMPT = """You write short posts for a social feed.
Return ONLY a JSON array of strings, no explanations."""

USER_PROMPT = (
    "Generate 3 short, engaging social media text posts about technology, finance, or motivation. "
    "One should include a link (fake or real). Return them as a JSON array of strings."
)

NO_KEY_FALLBACK = [
    "Just learned about the new crypto regulations. Interesting times ahead! #crypto",
    "Who else is bullish on USDT stability? 🚀",
    "Check out this cool resource for React developers: https://react.dev",
]

ERROR_FALLBACK = [
    "System update: The new pay-per-view algorithm is live.",
    "Daily Reminder: Drink water and check your portfolio.",
]


class PostGenerator:
    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client=None):
        self.api_key = api_key or os.getenv("GROQ_API_KEY")
        self.model = model or os.getenv("GROQ_MODEL", DEFAULT_MODEL)
        self.client = client
        self.last_source: Optional[str] = None

        if self.client is None and self.api_key:
            self.client = Groq(api_key=self.api_key)

    @property
    def is_available(self) -> bool:
        return self.client is not None

    def generate_sample_posts(self) -> list[str]:
        if not self.client:
            logger.warning("No GROQ_API_KEY found. Returning fallback posts.")
            self.last_source = "fallback"
            return list(NO_KEY_FALLBACK)

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": USER_PROMPT},
                ],
                temperature=0.9,
                max_tokens=512,
            )
            posts = self._extract_posts(response.choices[0].message.content or "")
        except Exception as e:
            logger.error("Groq error: %s", e)
            self.last_source = "fallback"
            return list(ERROR_FALLBACK)

        self.last_source = "groq"
        return posts

    def _extract_posts(self, text: str) -> list[str]:
        if not text.strip():
            return []
        match = re.search(r'\[[\s\S]*\]', text)
        posts = json.loads(match.group() if match else text)
        if not isinstance(posts, list):
            return []
        return [p.strip() for p in posts if isinstance(p, str) and p.strip()]


if __name__ == "__main__":
    import sys
    generator = PostGenerator(api_key=sys.argv[1] if len(sys.argv) > 1 else None)
    print(f"Groq available: {generator.is_available}")
    print(json.dumps(generator.generate_sample_posts(), indent=2, ensure_ascii=False))
