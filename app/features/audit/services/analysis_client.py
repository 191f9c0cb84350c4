import logging
import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Optional

import httpx
from pydantic import ValidationError

from app.features.audit.schemas.analysis import AnalysisResult
from app.features.audit.schemas.scan import ScanResult
from app.features.audit.services.errors import (
    AnalysisServiceError,
    RateLimitedError,
    ServiceUnavailableError,
    TransientError,
)
from app.platform.utils.rate_limit import RateLimitWindow

logger = logging.getLogger(__name__)

ANALYZE_PATH = "/analyze-audit-data"
BODY_PREVIEW_CHARS = 400


def parse_retry_after(
    value: Optional[str],
    now: Optional[datetime] = None,
) -> Optional[float]:
    """
    Parse a Retry-After header: either delta-seconds or an HTTP date.

    Returns seconds to wait (never negative) or None when the header is
    missing or unparseable.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        return max(0.0, seconds) if math.isfinite(seconds) else None

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return float(max(0, math.ceil((retry_at - now).total_seconds())))


class AnalysisClient:
    """
    HTTP client for the remote analysis service.

    A 429 answer sets the shared RateLimitWindow so that no other job calls
    the service until the cooldown has passed.
    """

    def __init__(
        self,
        base_url: str,
        rate_limit_window: RateLimitWindow,
        timeout_seconds: float = 40.0,
        default_cooldown_ms: int = 60000,
        http_client: Optional[httpx.AsyncClient] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.base_url = base_url.strip().rstrip("/")
        self.rate_limit_window = rate_limit_window
        self.timeout_seconds = timeout_seconds
        self.default_cooldown_ms = default_cooldown_ms
        self._client = http_client
        self._owns_client = http_client is None
        self._now = now

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{ANALYZE_PATH}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def analyze(self, scan_result: ScanResult) -> AnalysisResult:
        payload = scan_result.to_payload()
        logger.info(f"Posting audit payload for {scan_result.url} to {self.endpoint}")

        try:
            response = await self._get_client().post(
                self.endpoint,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout_seconds,
            )
        except httpx.ConnectError as e:
            logger.error(f"Analysis service unreachable at {self.base_url}: {e}")
            raise ServiceUnavailableError(
                "Analysis service is not available. Please ensure the analysis service is running."
            ) from e
        except httpx.TimeoutException as e:
            raise TransientError(
                f"Analysis request timed out after {self.timeout_seconds}s"
            ) from e
        except httpx.HTTPError as e:
            raise TransientError(f"Analysis request failed: {e}") from e

        if response.status_code == 429:
            raise self._rate_limited(response)

        if response.status_code >= 400:
            body = response.text[:BODY_PREVIEW_CHARS]
            logger.error(f"Analysis service returned HTTP {response.status_code}: {body}")
            raise AnalysisServiceError(response.status_code, body)

        try:
            return AnalysisResult.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error(f"Analysis service returned an unexpected payload: {e}")
            raise TransientError("Analysis service returned an invalid response body") from e

    def _rate_limited(self, response: httpx.Response) -> RateLimitedError:
        retry_after = parse_retry_after(response.headers.get("retry-after"), now=self._now())
        if retry_after is not None:
            self.rate_limit_window.extend(retry_after)
        else:
            self.rate_limit_window.extend(self.default_cooldown_ms / 1000)

        body = response.text[:BODY_PREVIEW_CHARS]
        logger.warning(
            f"Analysis service rate limited the request (Retry-After: "
            f"{retry_after if retry_after is not None else 'none'}); body: {body}"
        )
        return RateLimitedError(
            f"Analysis service HTTP 429: {body}",
            retry_after_seconds=retry_after,
        )
