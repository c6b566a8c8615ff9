"""
X (Twitter) posting client.

Media goes up through the v1.1 upload endpoint and the post is created
through v2, both with OAuth 1.0a user credentials. Provider exceptions are
converted into ``PostingError`` so callers can classify failures without
depending on tweepy.
"""

import io
from typing import Optional, Protocol

import tweepy

from ..utils.logger import get_logger

logger = get_logger()


class PostingError(Exception):
    """A failed upload or publish, with whatever status the provider gave."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        api_codes: Optional[list[int]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.api_codes = api_codes or []


class PostingClient(Protocol):
    """Upload an image, then publish text referencing it."""

    def upload_media(self, image: bytes) -> str:
        """Upload PNG bytes and return a media reference."""
        ...

    def publish(self, text: str, media_ref: str) -> str:
        """Publish a post and return its id."""
        ...


def _to_posting_error(action: str, exc: tweepy.TweepyException) -> PostingError:
    if isinstance(exc, tweepy.HTTPException):
        status_code = exc.response.status_code if exc.response is not None else None
        return PostingError(
            f"{action} failed: {exc}",
            status_code=status_code,
            api_codes=list(exc.api_codes),
        )
    return PostingError(f"{action} failed: {exc}")


class TweepyPostingClient:
    """PostingClient backed by tweepy."""

    def __init__(self, api: tweepy.API, client: tweepy.Client):
        self.api = api
        self.client = client

    @classmethod
    def from_credentials(
        cls,
        app_key: str,
        app_secret: str,
        access_token: str,
        access_secret: str,
    ) -> "TweepyPostingClient":
        """Build both tweepy clients from the four user-context credentials."""
        auth = tweepy.OAuth1UserHandler(app_key, app_secret, access_token, access_secret)
        client = tweepy.Client(
            consumer_key=app_key,
            consumer_secret=app_secret,
            access_token=access_token,
            access_token_secret=access_secret,
        )
        return cls(tweepy.API(auth), client)

    def upload_media(self, image: bytes) -> str:
        try:
            media = self.api.media_upload(filename="receipt.png", file=io.BytesIO(image))
        except tweepy.TweepyException as e:
            raise _to_posting_error("Media upload", e) from e

        media_id = media.media_id_string
        logger.info("Media uploaded", extra={"media_id": media_id})
        return media_id

    def publish(self, text: str, media_ref: str) -> str:
        try:
            response = self.client.create_tweet(text=text, media_ids=[media_ref])
        except tweepy.TweepyException as e:
            raise _to_posting_error("Post", e) from e

        post_id = str((response.data or {}).get("id", ""))
        logger.info("Post published", extra={"post_id": post_id, "media_id": media_ref})
        return post_id
