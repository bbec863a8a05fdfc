"""Client for the hosted voting backend's stored procedures.

The backend exposes PostgREST-style RPC endpoints
(``POST {BACKEND_URL}/rest/v1/rpc/<function>``). Their schemas are owned
externally; this client only shapes parameters and unwraps results.
"""

import logging
from typing import Any, Optional

import httpx

from app.config import get_settings
from app.services.errors import BackendError, NotFoundError
from app.services.normalizer import ItemKey
from app.services.weather import JobWeather, normalize_weather_row

logger = logging.getLogger(__name__)

settings = get_settings()


def _first_row(data: Any) -> Optional[dict]:
    """RPCs return either a single row or a list of rows."""
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


class BackendRPCClient:
    """Client for the voting backend RPC API."""

    def __init__(self):
        self.base_url = settings.backend_rpc_base_url
        self.api_key = settings.backend_api_key
        self.timeout = settings.request_timeout_seconds

    def _get_headers(self) -> dict:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text or f"Backend returned {response.status_code}"
        if isinstance(payload, dict):
            return payload.get("message") or payload.get("error") or str(payload)
        return str(payload)

    async def rpc(self, function: str, params: dict) -> Any:
        """Call a stored procedure and return its decoded JSON result.

        Raises:
            BackendError: On transport failure or a 4xx/5xx answer. The
                backend's own message is kept verbatim.
        """
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}/{function}",
                    headers=self._get_headers(),
                    json=params,
                    timeout=self.timeout,
                )
        except httpx.HTTPError as exc:
            logger.warning("Backend RPC %s failed: %s", function, exc)
            raise BackendError("Unable to reach the voting backend.", status_code=502) from exc

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.warning(
                "Backend RPC %s returned %s: %s", function, response.status_code, message
            )
            raise BackendError(message, status_code=response.status_code)

        if not response.content:
            return None
        return response.json()

    async def get_context(self, token: str) -> dict:
        """Fetch the voting context for a token.

        Raises:
            NotFoundError: If the token produced no context row.
            BackendError: If the backend rejected the token or failed.
        """
        data = await self.rpc("rpc_weather_vote_get_context", {"p_token": token})
        row = _first_row(data)
        if not row:
            raise NotFoundError("No voting context found for this token.")
        return row

    async def submit_vote(
        self,
        token: str,
        key: ItemKey,
        vote_value: str,
        vote_reason: Optional[str] = None,
    ) -> dict:
        """Store a vote and return the backend's canonical row."""
        internal_job_id, forecast_date, lens_id = key
        data = await self.rpc(
            "rpc_weather_vote_submit",
            {
                "token": token,
                "internal_job_id": internal_job_id,
                "forecast_date": forecast_date or None,
                "lens_id": lens_id or None,
                "vote_value": vote_value,
                "vote_reason": vote_reason,
            },
        )
        return _first_row(data) or {}

    async def get_job_votes(self, token: str, key: ItemKey) -> list[dict]:
        """Every voter's vote on one item, as visible to this token."""
        internal_job_id, forecast_date, lens_id = key
        data = await self.rpc(
            "rpc_weather_vote_get_job_votes",
            {
                "p_token": token,
                "p_internal_job_id": internal_job_id,
                "p_forecast_date": forecast_date,
                "p_lens_id": lens_id,
            },
        )
        if isinstance(data, list):
            return data
        return [data] if data else []

    async def get_job_weather(self, job_id: int, forecast_date: str) -> Optional[JobWeather]:
        """Hourly forecast for a job. None means no forecast exists."""
        data = await self.rpc(
            "get_job_hourly_weather",
            {"p_job_id": job_id, "p_forecast_date": forecast_date},
        )
        try:
            return normalize_weather_row(data)
        except ValueError as exc:
            logger.error("Failed to parse hourly_weather for job %s: %s", job_id, exc)
            raise BackendError("Failed to parse hourly weather.", status_code=500) from exc


backend_client = BackendRPCClient()
