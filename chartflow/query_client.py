"""
HTTP client for the chart data query service.

Provides the DataQueryService the coordinator consumes: blocking urllib
requests run in the default executor so the event loop keeps serving other
charts while one waits on the network.
"""

import asyncio
import json
import socket
import ssl
from typing import Any, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from .errors import FetchTimeoutError, NetworkError, ServerError, error_for_status
from .models import ChartData


class ChartDataHttpClient:
    """Thin JSON-over-HTTP client for the query service."""

    def __init__(self, server_base: str, token: Optional[str] = None, verify_tls: bool = True):
        """
        Initialize HTTP client.

        Args:
            server_base: Base URL of the query service (e.g., https://dash:8000)
            token: Optional bearer token sent with every request
            verify_tls: Verify server certificates on HTTPS
        """
        self.server_base = server_base.rstrip("/")
        self.token = token
        self._ssl_context = self._create_ssl_context(verify_tls)

    @staticmethod
    def _create_ssl_context(verify: bool) -> ssl.SSLContext:
        ssl_context = ssl.create_default_context()
        if not verify:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
        return ssl_context

    def get_json(self, endpoint: str, params: Optional[Dict[str, str]] = None,
                 timeout: float = 30) -> Dict[str, Any]:
        """
        Make a GET request.

        Args:
            endpoint: API endpoint path
            params: Optional query string parameters
            timeout: Socket timeout in seconds

        Returns:
            Response data as dictionary

        Raises:
            HTTPError: On HTTP errors
            URLError: On connection errors
        """
        url = f"{self.server_base}{endpoint}"
        if params:
            url = f"{url}?{urlencode(params)}"

        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        req = Request(url, headers=headers, method="GET")

        # Use SSL context for HTTPS URLs
        ssl_context = self._ssl_context if url.startswith("https://") else None

        with urlopen(req, timeout=timeout, context=ssl_context) as resp:
            raw = resp.read().decode("utf-8")
            return json.loads(raw) if raw else {}


class HttpChartDataService:
    """DataQueryService backed by GET /api/charts/{chart_id}/data"""

    def __init__(self, client: ChartDataHttpClient):
        self.client = client

    def fetch_blocking(self, chart_id: str, filters: Dict[str, Any],
                       force_refresh: bool, timeout_ms: int) -> ChartData:
        params = {}
        if filters:
            params["filters"] = json.dumps(filters, sort_keys=True, default=str)
        if force_refresh:
            params["force_refresh"] = "true"

        endpoint = f"/api/charts/{quote(str(chart_id), safe='')}/data"
        try:
            payload = self.client.get_json(endpoint, params, timeout=timeout_ms / 1000)
        except HTTPError as e:
            try:
                msg = e.read().decode("utf-8")
            except Exception:
                msg = str(e)
            raise error_for_status(e.code, f"HTTP {e.code}: {msg or e.reason}") from e
        except socket.timeout as e:
            raise FetchTimeoutError(f"no response within {timeout_ms}ms") from e
        except URLError as e:
            if isinstance(e.reason, socket.timeout):
                raise FetchTimeoutError(f"no response within {timeout_ms}ms") from e
            raise NetworkError(f"failed to reach query service: {e.reason}") from e
        except json.JSONDecodeError as e:
            raise ServerError(f"query service returned invalid JSON: {e}") from e

        # Responses may wrap the result: {"success": true, "data": {...}}
        body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        return ChartData.from_payload(body)

    async def fetch_chart_data(self, chart_id: str, filters: Dict[str, Any],
                               force_refresh: bool, timeout_ms: int) -> ChartData:
        loop = asyncio.get_running_loop()
        # Run blocking request in executor to avoid blocking event loop
        return await loop.run_in_executor(
            None, self.fetch_blocking, chart_id, filters, force_refresh, timeout_ms
        )
