import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List

import httpx

from .config import provider_config, ProviderConfig

logger = logging.getLogger(__name__)

BYTES_PER_MEGABIT = 1_000_000 / 8


class APIResult(Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class APIResponse:
    result: APIResult
    status_code: int
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_gone(self) -> bool:
        """True when a delete left the resource absent, including already-deleted."""
        return self.result in (APIResult.SUCCESS, APIResult.NOT_FOUND)


def _json_or_none(response: httpx.Response) -> Optional[Dict[str, Any]]:
    return response.json() if response.content else None


def _to_unix(dt: datetime) -> int:
    return int((dt - datetime(1970, 1, 1)).total_seconds())


def integrate_bandwidth(values: List[List[Any]]) -> int:
    """Turn a ``[[unix_ts, "mbps"], ...]`` series into transferred bytes."""
    points = sorted((float(ts), float(rate)) for ts, rate in values)
    total = 0.0
    for (ts, rate), (next_ts, _) in zip(points, points[1:]):
        total += rate * BYTES_PER_MEGABIT * (next_ts - ts)
    return int(total)


class ProviderClient:
    """Synchronous DigitalOcean API v2 client used by billing and metrics jobs."""

    def __init__(self, config: ProviderConfig = None, transport: Optional[httpx.BaseTransport] = None):
        self.config = config or provider_config
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    def _get_client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.config.token:
                headers["Authorization"] = f"Bearer {self.config.token}"
            self._client = httpx.Client(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout),
                headers=headers,
                transport=self._transport
            )
        return self._client

    def close(self):
        if self._client:
            self._client.close()
            self._client = None

    def _request(
        self,
        method: str,
        url: str,
        json: Optional[Dict] = None,
        params: Optional[Dict] = None,
        timeout: Optional[float] = None,
        retry_count: int = None
    ) -> APIResponse:
        retry_count = retry_count or self.config.retry_count
        client = self._get_client()
        request_timeout = httpx.Timeout(timeout) if timeout is not None else httpx.USE_CLIENT_DEFAULT
        last_error = "Max retries exceeded"

        for attempt in range(1, retry_count + 1):
            try:
                response = client.request(method, url, json=json, params=params, timeout=request_timeout)
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                kind = "Request timeout" if isinstance(e, httpx.TimeoutException) else "Connection error"
                logger.warning(f"{kind} calling {method} {url} (attempt {attempt}/{retry_count})")
                last_error = f"{kind}: {e}"
                if attempt < retry_count:
                    self._backoff(attempt)
                continue
            except httpx.HTTPError as e:
                logger.error(f"Unexpected HTTP error calling {method} {url}: {e}")
                return APIResponse(result=APIResult.ERROR, status_code=0, error=str(e))

            status_code = response.status_code
            retryable = status_code == 429 or status_code >= 500
            if retryable and attempt < retry_count:
                logger.warning(f"Provider returned {status_code} for {method} {url} (attempt {attempt}/{retry_count})")
                self._backoff(attempt)
                continue

            return self._to_api_response(response)

        return APIResponse(result=APIResult.ERROR, status_code=0, error=last_error)

    def _backoff(self, attempt: int):
        time.sleep(self.config.retry_delay * attempt)

    def _to_api_response(self, response: httpx.Response) -> APIResponse:
        status_code = response.status_code

        if status_code == 404:
            return APIResponse(result=APIResult.NOT_FOUND, status_code=404, error="Resource not found")

        if status_code == 409:
            return APIResponse(result=APIResult.CONFLICT, status_code=409, data=_json_or_none(response))

        if status_code >= 400:
            try:
                error_data = response.json() if response.content else {}
            except ValueError:
                error_data = {"message": response.text or "Unknown error"}
            return APIResponse(
                result=APIResult.ERROR,
                status_code=status_code,
                error=error_data.get("message", str(error_data))
            )

        return APIResponse(result=APIResult.SUCCESS, status_code=status_code, data=_json_or_none(response))

    def create_droplet(
        self,
        name: str,
        region: str,
        size: str,
        image: str = "ubuntu-22-04-x64",
        ssh_keys: Optional[List[str]] = None,
        user_data: Optional[str] = None
    ) -> APIResponse:
        payload = {
            "name": name,
            "region": region,
            "size": size,
            "image": image,
            "monitoring": True
        }
        if ssh_keys:
            payload["ssh_keys"] = ssh_keys
        if user_data:
            payload["user_data"] = user_data

        return self._request("POST", self.config.droplets_url, json=payload)

    def get_droplet(self, droplet_id: str) -> APIResponse:
        return self._request("GET", f"{self.config.droplets_url}/{droplet_id}")

    def delete_droplet(self, droplet_id: str) -> APIResponse:
        return self._request(
            "DELETE",
            f"{self.config.droplets_url}/{droplet_id}",
            timeout=self.config.delete_timeout
        )

    def create_volume(
        self,
        name: str,
        region: str,
        size_gigabytes: int,
        description: Optional[str] = None
    ) -> APIResponse:
        payload = {
            "name": name,
            "region": region,
            "size_gigabytes": size_gigabytes
        }
        if description:
            payload["description"] = description

        return self._request("POST", self.config.volumes_url, json=payload)

    def delete_volume(self, volume_id: str) -> APIResponse:
        return self._request(
            "DELETE",
            f"{self.config.volumes_url}/{volume_id}",
            timeout=self.config.delete_timeout
        )

    def get_bandwidth(
        self,
        droplet_id: str,
        direction: str,
        start: datetime,
        end: datetime,
        interface: str = "public"
    ) -> APIResponse:
        return self._request(
            "GET",
            self.config.bandwidth_metrics_url,
            params={
                "host_id": droplet_id,
                "interface": interface,
                "direction": direction,
                "start": _to_unix(start),
                "end": _to_unix(end)
            }
        )

    def fetch_metrics(self, droplet_id: str, start: datetime, end: datetime) -> APIResponse:
        """Bytes received and sent by a droplet between ``start`` and ``end``."""
        totals = {}
        for direction, key in (("inbound", "network_in"), ("outbound", "network_out")):
            response = self.get_bandwidth(droplet_id, direction, start, end)
            if response.result != APIResult.SUCCESS:
                return response

            series = (response.data or {}).get("data", {}).get("result", [])
            totals[key] = sum(integrate_bandwidth(s.get("values", [])) for s in series)

        return APIResponse(result=APIResult.SUCCESS, status_code=200, data=totals)

    def health_check(self) -> bool:
        try:
            response = self._request("GET", f"{self.config.api_prefix}/account", retry_count=1)
            return response.result == APIResult.SUCCESS
        except Exception:
            return False


_client_instance: Optional[ProviderClient] = None


def get_provider_client() -> ProviderClient:
    global _client_instance
    if _client_instance is None:
        _client_instance = ProviderClient()
    return _client_instance


def close_provider_client():
    global _client_instance
    if _client_instance:
        _client_instance.close()
        _client_instance = None
