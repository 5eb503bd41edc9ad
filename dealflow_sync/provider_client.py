"""
MeetGeek API client for fetching meeting transcripts.

Provides methods for:
- Looking up a meeting
- Fetching its transcript, if the provider has produced one
- Parsing the provider's transcript payload formats into segments
- Retry logic with exponential backoff on transport failures
"""

from datetime import datetime
from typing import Any, Optional, Protocol

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dealflow_sync.models.transcript import Segment
from dealflow_sync.utils.config import get_settings
from dealflow_sync.utils.exceptions import (
    PermanentProviderError,
    RateLimitError,
    TransientProviderError,
)
from dealflow_sync.utils.logger import get_logger

logger = get_logger("provider")

PERMANENT_STATUS_CODES = frozenset({400, 401, 403, 404, 410, 422})
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})


class TranscriptProvider(Protocol):
    """Anything that can tell whether a meeting's transcript is ready."""

    async def fetch_transcript(self, meeting_id: str) -> Optional[list[Segment]]:
        """
        Returns:
            The ordered segments, or None while the transcript is not ready.

        Raises:
            TransientProviderError: The attempt may succeed later.
            PermanentProviderError: The meeting will never have a transcript.
        """
        ...


class MeetGeekClient:
    """
    Client for the MeetGeek REST API.

    Handles authentication, transport retries, status classification and
    response parsing.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize the MeetGeek client.

        Args:
            api_key: MeetGeek API key. Defaults to config value.
            api_url: MeetGeek API base URL. Defaults to config value.
            timeout: Request timeout in seconds. Defaults to config value.
        """
        settings = get_settings()
        self.api_key = api_key or settings.provider.api_key
        self.api_url = (api_url or settings.provider.api_url).rstrip("/")
        self.timeout = timeout or settings.provider.timeout

        if not self.api_key:
            logger.warning("MeetGeek API key not configured")

        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers=self._build_headers(),
            timeout=self.timeout,
        )

    def _build_headers(self) -> dict[str, str]:
        """Build request headers with authentication."""
        headers = {"Accept": "application/json"}
        if self.api_key:
            # Keys are sometimes stored with the scheme already attached.
            if self.api_key.startswith("Bearer "):
                headers["Authorization"] = self.api_key
            else:
                headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "MeetGeekClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _send(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        return await self._client.request(method, endpoint, **kwargs)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Make an HTTP request, classifying failures as transient or permanent.

        Timeouts and network errors are retried before being reported.
        Responses with a 2xx/3xx status, a 404 or a 202 are returned to the
        caller, which decides what "not found" means for its endpoint.

        Raises:
            TransientProviderError: Timeouts, network errors, 408/429/5xx
            RateLimitError: HTTP 429
            PermanentProviderError: Other 4xx responses
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        logger.debug(f"Making {method} request to {url}")

        try:
            response = await self._send(method, endpoint, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Request timeout: {url}")
            raise TransientProviderError(
                "Request timed out",
                endpoint=endpoint,
                cause=e,
            )
        except httpx.NetworkError as e:
            logger.error(f"Network error: {url} - {e}")
            raise TransientProviderError(
                "Network error occurred",
                endpoint=endpoint,
                cause=e,
            )

        status = response.status_code
        if status == 429:
            retry_after_header = response.headers.get("Retry-After", "60")
            try:
                retry_after = int(retry_after_header)
            except (ValueError, TypeError):
                retry_after = 60
            logger.warning(f"Rate limited, retry after {retry_after}s")
            raise RateLimitError(
                "MeetGeek API rate limit exceeded",
                service="meetgeek",
                retry_after=retry_after,
                endpoint=endpoint,
            )

        if status == 404 or status < 400:
            return response

        error_body = response.text
        logger.error(f"API error {status}: {error_body[:200]}")
        if status >= 500 or status in TRANSIENT_STATUS_CODES:
            raise TransientProviderError(
                f"MeetGeek API error: {status}",
                status_code=status,
                response_body=error_body,
                endpoint=endpoint,
            )
        raise PermanentProviderError(
            f"MeetGeek API error: {status}",
            status_code=status,
            response_body=error_body,
            endpoint=endpoint,
        )

    async def get_meeting(self, meeting_id: str) -> dict[str, Any]:
        """
        Look up a meeting.

        Raises:
            PermanentProviderError: The provider does not know the meeting.
        """
        endpoint = f"/v1/meetings/{meeting_id}"
        response = await self._make_request("GET", endpoint)
        if response.status_code == 404:
            raise PermanentProviderError(
                "Meeting not found in MeetGeek",
                status_code=404,
                response_body=response.text,
                endpoint=endpoint,
            )
        return response.json()

    async def fetch_transcript(self, meeting_id: str) -> Optional[list[Segment]]:
        """
        Fetch a meeting's transcript.

        Args:
            meeting_id: MeetGeek meeting identifier

        Returns:
            Ordered segments, or None if the transcript is not ready yet.
        """
        meeting = await self.get_meeting(meeting_id)
        logger.info(f"Fetching transcript for meeting: {meeting.get('title', meeting_id)}")

        response = await self._make_request("GET", f"/v1/meetings/{meeting_id}/transcript")
        if response.status_code in (202, 204, 404):
            logger.debug(f"Transcript for meeting {meeting_id} not ready ({response.status_code})")
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning(f"Transcript response for {meeting_id} is not JSON")
            return None

        segments = parse_transcript_segments(payload)
        if not segments:
            return None

        logger.info(f"Fetched {len(segments)} transcript segments for meeting {meeting_id}")
        return segments

    async def health_check(self) -> bool:
        """
        Check if the MeetGeek API is reachable with the configured key.

        Returns:
            True if API is healthy, False otherwise
        """
        try:
            response = await self._client.get("/v1/meetings", params={"limit": 1}, timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Health check failed: {e}")
            return False


def _parse_timestamp(value: Any) -> Optional[float | datetime]:
    """Return seconds for numeric timestamps, a datetime for ISO strings."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        return value
    text = str(value)
    try:
        return float(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable segment timestamp: {text!r}")
        return None


TRANSCRIPT_PAYLOAD_KEYS = ("transcript", "segments", "sentences")


def _extract_items(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in TRANSCRIPT_PAYLOAD_KEYS:
            items = payload.get(key)
            if isinstance(items, list):
                return items
    logger.warning(f"Unexpected transcript format: {str(payload)[:200]}")
    return []


def parse_transcript_segments(payload: Any) -> list[Segment]:
    """
    Parse any of the provider's transcript payload shapes into segments.

    Accepts a bare list, or an object holding a ``transcript``, ``segments``
    or ``sentences`` list. Sentence items carry their text under
    ``transcript``. ISO timestamps become offsets from the first segment;
    each segment ends where the next one starts.

    Args:
        payload: Decoded JSON response body

    Returns:
        Ordered segments; empty when the payload holds no usable text.
    """
    raw: list[tuple[str, str, Optional[float | datetime]]] = []
    for item in _extract_items(payload):
        if not isinstance(item, dict):
            continue
        text = str(item.get("text") or item.get("transcript") or "").strip()
        if not text:
            continue
        speaker = str(item.get("speaker") or "Unknown speaker")
        stamp = _parse_timestamp(
            item.get("timestamp", item.get("start_offset", item.get("start")))
        )
        raw.append((speaker, text, stamp))

    if not raw:
        return []

    origin = next((s for _, _, s in raw if isinstance(s, datetime)), None)
    offsets: list[float] = []
    for _, _, stamp in raw:
        if isinstance(stamp, datetime) and origin is not None:
            offset = (stamp - origin).total_seconds()
        elif isinstance(stamp, float):
            offset = stamp
        else:
            offset = offsets[-1] if offsets else 0.0
        offsets.append(max(offset, offsets[-1] if offsets else 0.0, 0.0))

    segments = []
    for index, (speaker, text, _) in enumerate(raw):
        end = offsets[index + 1] if index + 1 < len(raw) else None
        segments.append(
            Segment(
                speaker=speaker,
                text=text,
                start_offset=offsets[index],
                end_offset=end,
            )
        )
    return segments
