"""
Receipt publishing.

Composes the caption for a captured receipt and publishes image + caption
through a PostingClient. Failures are classified rather than retried:
authorization failures stop the posting loop, everything else is transient.
"""

import asyncio
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from ..api.x_client import PostingClient
from ..receipts.models import ReceiptCapture
from ..utils.logger import get_logger
from ..utils.metrics import get_metrics

logger = get_logger()
metrics = get_metrics()

# X handles keyed by ESPN abbreviation
TEAM_HANDLES = {
    "ATL": "@ATLHawks",
    "BOS": "@celtics",
    "BKN": "@BrooklynNets",
    "CHA": "@hornets",
    "CHI": "@chicagobulls",
    "CLE": "@cavs",
    "DAL": "@dallasmavs",
    "DEN": "@nuggets",
    "DET": "@DetroitPistons",
    "GS": "@warriors",
    "HOU": "@HoustonRockets",
    "IND": "@Pacers",
    "LAC": "@LAClippers",
    "LAL": "@Lakers",
    "MEM": "@memgrizz",
    "MIA": "@MiamiHEAT",
    "MIL": "@Bucks",
    "MIN": "@Timberwolves",
    "NO": "@PelicansNBA",
    "NY": "@nyknicks",
    "OKC": "@OKCThunder",
    "ORL": "@OrlandoMagic",
    "PHI": "@sixers",
    "PHX": "@Suns",
    "POR": "@trailblazers",
    "SAC": "@SacramentoKings",
    "SA": "@spurs",
    "TOR": "@Raptors",
    "UTAH": "@utahjazz",
    "WSH": "@WashWizards",
}

HASHTAGS = "#NBA #{abbrev} #FinalTabs"

AUTH_STATUS_CODES = frozenset({401, 403})
# 32: could not authenticate, 89: invalid or expired token,
# 215: bad authentication data, 261: app cannot perform write actions
AUTH_API_CODES = frozenset({32, 89, 215, 261})


class PublishStatus(str, Enum):
    POSTED = "posted"
    SKIPPED = "skipped"
    FAILED = "failed"


class FailureKind(str, Enum):
    AUTHORIZATION = "authorization"
    TRANSIENT = "transient"


class PublishError(Exception):
    """Base class for classified publish failures."""

    kind: FailureKind = FailureKind.TRANSIENT

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        api_codes: Optional[list[int]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.api_codes = api_codes or []


class PublishAuthError(PublishError):
    """Credential or permission problem; retrying other receipts is pointless."""

    kind = FailureKind.AUTHORIZATION


class PublishTransientError(PublishError):
    """Rate limiting, network trouble, bad request: affects one receipt only."""

    kind = FailureKind.TRANSIENT


class PublishResult(BaseModel):
    """Outcome of one publish attempt for a receipt identity."""

    identity: str
    status: PublishStatus
    failure_kind: Optional[FailureKind] = None
    error: Optional[str] = None
    caption: Optional[str] = None

    @classmethod
    def posted(cls, identity: str, caption: Optional[str] = None) -> "PublishResult":
        return cls(identity=identity, status=PublishStatus.POSTED, caption=caption)

    @classmethod
    def skipped(cls, identity: str) -> "PublishResult":
        return cls(identity=identity, status=PublishStatus.SKIPPED)

    @classmethod
    def failed(cls, identity: str, error: PublishError) -> "PublishResult":
        return cls(
            identity=identity,
            status=PublishStatus.FAILED,
            failure_kind=error.kind,
            error=str(error),
        )

    @property
    def is_auth_failure(self) -> bool:
        return (
            self.status == PublishStatus.FAILED
            and self.failure_kind == FailureKind.AUTHORIZATION
        )


def team_handle(abbrev: str) -> str:
    """X handle for a team, falling back to its abbreviation."""
    return TEAM_HANDLES.get(abbrev.upper(), abbrev)


def compose_caption(capture: ReceiptCapture) -> str:
    """
    Build the post text for a receipt.

    Example::

        Everyone Eats
        @Lakers win 120-110
        #NBA #LAL #FinalTabs
    """
    winner_score, loser_score = capture.final_score
    return "\n".join(
        [
            capture.tagline,
            f"{team_handle(capture.team_abbrev)} win {winner_score}-{loser_score}",
            HASHTAGS.format(abbrev=capture.team_abbrev),
        ]
    )


def classify_posting_error(exc: Exception) -> PublishError:
    """
    Map a posting failure onto the publish error taxonomy.

    Args:
        exc: Error raised by the posting client

    Returns:
        PublishAuthError for 401/403 or known credential error codes,
        PublishTransientError for everything else
    """
    status_code = getattr(exc, "status_code", None)
    api_codes = list(getattr(exc, "api_codes", None) or [])

    if status_code in AUTH_STATUS_CODES or AUTH_API_CODES.intersection(api_codes):
        return PublishAuthError(str(exc), status_code=status_code, api_codes=api_codes)
    return PublishTransientError(str(exc), status_code=status_code, api_codes=api_codes)


class Publisher:
    """
    Publishes captured receipts.

    In dry run the caption is composed and logged and the result is always
    POSTED; no client is needed and nothing touches the network.
    """

    def __init__(self, client: Optional[PostingClient] = None, dry_run: bool = False):
        if client is None and not dry_run:
            raise ValueError("A posting client is required unless dry_run is set")
        self.client = client
        self.dry_run = dry_run

    async def publish(self, capture: ReceiptCapture) -> PublishResult:
        """
        Upload the receipt image and publish it with its caption.

        Args:
            capture: Captured receipt

        Returns:
            POSTED, or FAILED with the classified failure kind
        """
        caption = compose_caption(capture)

        if self.dry_run:
            logger.info(
                "[DRY RUN] Would post receipt",
                extra={"identity": capture.identity, "caption": caption},
            )
            metrics.record_post(PublishStatus.POSTED.value, labels={"dry_run": "true"})
            return PublishResult.posted(capture.identity, caption)

        try:
            media_ref = await asyncio.to_thread(self.client.upload_media, capture.image)
        except Exception as e:
            return self._failure(capture, "upload", e)

        try:
            await asyncio.to_thread(self.client.publish, caption, media_ref)
        except Exception as e:
            return self._failure(capture, "publish", e)

        logger.info(
            "Posted receipt",
            extra={"identity": capture.identity, "media_ref": media_ref},
        )
        metrics.record_post(PublishStatus.POSTED.value)
        return PublishResult.posted(capture.identity, caption)

    def _failure(
        self, capture: ReceiptCapture, step: str, exc: Exception
    ) -> PublishResult:
        error = classify_posting_error(exc)
        logger.error(
            f"Receipt {step} failed",
            extra={
                "identity": capture.identity,
                "step": step,
                "failure_kind": error.kind.value,
                "status_code": error.status_code,
                "api_codes": error.api_codes,
                "error": str(exc),
            },
        )
        metrics.record_post(PublishStatus.FAILED.value, error.kind.value)
        return PublishResult.failed(capture.identity, error)
