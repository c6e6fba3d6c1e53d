from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

HEAD_TIMEOUT_SECONDS = 10.0
MAX_ATTEMPTS = 2


class ImageCheckState(enum.Enum):
    idle = "idle"
    in_flight = "in_flight"
    succeeded = "succeeded"
    failed = "failed"


@dataclass(slots=True)
class ImageCheck:
    url: str
    state: ImageCheckState = ImageCheckState.idle
    attempts: int = 0
    status_code: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is ImageCheckState.succeeded


async def check_image_url(
    url: str,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = HEAD_TIMEOUT_SECONDS,
) -> ImageCheck:
    """HEAD the image; a failed first attempt gets exactly one retry."""
    check = ImageCheck(url=url)
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        transport=transport,
        follow_redirects=True,
    ) as client:
        while check.attempts < MAX_ATTEMPTS:
            check.state = ImageCheckState.in_flight
            check.attempts += 1
            try:
                response = await client.head(url)
            except httpx.TimeoutException:
                check.error = "timeout"
            except httpx.HTTPError as exc:
                check.error = str(exc) or exc.__class__.__name__
            else:
                check.status_code = response.status_code
                if response.status_code < 400:
                    check.state = ImageCheckState.succeeded
                    check.error = None
                    return check
                check.error = f"HTTP {response.status_code}"
            check.state = ImageCheckState.failed
    logger.info("Image check failed url=%s error=%s", url, check.error)
    return check
