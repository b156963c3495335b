"""Traccar REST client for trip reports."""
import asyncio
import datetime as dt
import logging
from typing import Any, Dict, List, Optional

import aiohttp
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shuttle_guard.config import TRACCAR_URL, TRACCAR_USER, TRACCAR_PASSWORD, TRACCAR_TIMEOUT_SECONDS
from shuttle_guard.logging_config import get_logger


logger = get_logger("traccar", "traccar.log")

RETRYABLE = (aiohttp.ClientError, asyncio.TimeoutError)


def retry_async(max_retries: int = 3, retry_delay: float = 1.0):
    """tenacity policy for Traccar calls: exponential backoff, reraise the last error."""
    return retry(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=retry_delay, max=30),
        retry=retry_if_exception_type(RETRYABLE),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def format_traccar_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    value = value.astimezone(dt.timezone.utc).replace(microsecond=0)
    return value.isoformat().replace("+00:00", "Z")


class TraccarClient:
    def __init__(
        self,
        base_url: str = TRACCAR_URL,
        user: str = TRACCAR_USER,
        password: str = TRACCAR_PASSWORD,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._auth = aiohttp.BasicAuth(user, password) if user else None
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=TRACCAR_TIMEOUT_SECONDS),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _get(self, path: str, params=None) -> Any:
        session = await self._get_session()
        async with session.get(
            f"{self.base_url}{path}",
            params=params,
            auth=self._auth,
            headers={"Accept": "application/json"},
        ) as response:
            response.raise_for_status()
            return await response.json()

    @retry_async(max_retries=3, retry_delay=1.5)
    async def get_trips_report(
        self, device_id: int, start: dt.datetime, end: dt.datetime
    ) -> List[Dict[str, Any]]:
        params = {
            "deviceId": device_id,
            "from": format_traccar_datetime(start),
            "to": format_traccar_datetime(end),
        }
        trips = await self._get("/api/reports/trips", params)
        if not isinstance(trips, list):
            raise TypeError(f"Unexpected /reports/trips response type: {type(trips).__name__}")

        logger.info(f"Fetched {len(trips)} trips for device {device_id}")
        return trips
