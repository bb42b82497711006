"""
Remote management API client.

This module provides a high-level async interface to the server host's
management API via httpx. It maps logical operations to HTTP calls for:
  - Fetching server status and resource utilization
  - Power actions (start, stop, restart) and console commands
  - Reading and updating server settings
  - Listing, uploading, toggling and deleting mods

Two backend profiles share one operation set:
  - DirectBackend: the bespoke server-control API (/server/*, /mods/*, ...)
  - PanelBackend: a generic hosting-panel client API scoped to one server
    (/api/client/servers/{id}/...). It only covers status, utilization,
    commands and power; the remaining operations raise request-malformed.

Error Handling:
  - Every failure is logged and re-raised as ApiError with a kind from
    ApiError.KINDS; nothing is retried and nothing is swallowed
  - No response (connect error, timeout) -> network-unreachable
  - Non-2xx response -> server-error (status + server message)
  - Client-side construction failure -> request-malformed

The client keeps no mutable state between calls apart from the pooled
httpx connection.
"""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .config import ApiConfig
from .model import ModEntry, ServerStatus, ServerUtilization, SettingEntry

logger = logging.getLogger(__name__)

POWER_SIGNALS = ("start", "stop", "restart")


class ApiError(Exception):
    """Classified failure of an API operation."""

    NETWORK_UNREACHABLE = "network-unreachable"
    SERVER_ERROR = "server-error"
    REQUEST_MALFORMED = "request-malformed"
    VALIDATION_DECLINED = "validation-declined"
    KINDS = (NETWORK_UNREACHABLE, SERVER_ERROR, REQUEST_MALFORMED, VALIDATION_DECLINED)

    def __init__(self, kind: str, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = status

    @classmethod
    def malformed(cls, detail: str) -> "ApiError":
        return cls(cls.REQUEST_MALFORMED, f"Request error: {detail}")

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ApiError":
        detail = None
        try:
            body = response.json()
            if isinstance(body, dict):
                detail = body.get('message') or body.get('error')
        except ValueError:
            pass
        detail = detail or response.reason_phrase or "Unknown error"
        return cls(cls.SERVER_ERROR, f"Server error: {response.status_code} - {detail}",
                   status=response.status_code)


def api_safe(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """
    Decorator for API operations that classifies and logs failures.

    httpx exceptions are translated into ApiError; an ApiError raised by the
    operation itself passes through. Either way the failure is logged and
    re-raised for the caller (poller or dispatcher) to handle.
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Any:
        try:
            return await func(*args, **kwargs)
        except ApiError as e:
            logger.error(f"API operation {func.__name__} failed ({e.kind}): {e}")
            raise
        except httpx.HTTPStatusError as e:
            err = ApiError.from_response(e.response)
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            err = ApiError.malformed(str(e))
        except httpx.TransportError as e:
            logger.debug(f"Transport failure in {func.__name__}: {e!r}")
            err = ApiError(ApiError.NETWORK_UNREACHABLE, "No response received from server")
        except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
            # Undecodable or unexpectedly shaped body
            err = ApiError.malformed(str(e) or e.__class__.__name__)
        logger.error(f"API operation {func.__name__} failed ({err.kind}): {err}")
        raise err
    return wrapper


class ApiBackend:
    """Shared transport for both profiles.

    Subclasses override the operations their remote API supports; the rest
    fall through to the base implementations, which refuse the call.
    """

    profile = ""
    api_prefix = ""
    extra_headers: Dict[str, str] = {}

    def __init__(self, config: ApiConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        headers = {
            'Authorization': f"Bearer {config.token}",
            'Accept': 'application/json',
        }
        headers.update(self.extra_headers)
        self.client = httpx.AsyncClient(
            base_url=config.base_url.rstrip('/') + self.api_prefix,
            headers=headers,
            timeout=httpx.Timeout(config.timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        logger.debug(f"{method} {path}")
        response = await self.client.request(method, path, **kwargs)
        response.raise_for_status()
        if not response.content:
            return None
        content_type = response.headers.get('content-type', '')
        if 'json' in content_type:
            return response.json()
        return response.text

    def _unsupported(self, operation: str) -> ApiError:
        return ApiError.malformed(f"{operation} is not available with the {self.profile} backend profile")

    @api_safe
    async def check_connection(self) -> bool:
        raise self._unsupported("check_connection")

    @api_safe
    async def get_server_status(self) -> ServerStatus:
        raise self._unsupported("get_server_status")

    @api_safe
    async def get_server_utilization(self) -> ServerUtilization:
        raise self._unsupported("get_server_utilization")

    @api_safe
    async def power_action(self, signal: str) -> Any:
        raise self._unsupported("power_action")

    @api_safe
    async def send_command(self, command: str) -> Any:
        raise self._unsupported("send_command")

    @api_safe
    async def get_settings(self) -> List[SettingEntry]:
        raise self._unsupported("get_settings")

    @api_safe
    async def update_setting(self, setting: str, value: str) -> Any:
        raise self._unsupported("update_setting")

    @api_safe
    async def change_map(self, map_path: str) -> Any:
        raise self._unsupported("change_map")

    @api_safe
    async def list_mods(self) -> List[ModEntry]:
        raise self._unsupported("list_mods")

    @api_safe
    async def upload_mod(self, filename: str, content: bytes) -> Any:
        raise self._unsupported("upload_mod")

    @api_safe
    async def toggle_mod(self, filename: str) -> Any:
        raise self._unsupported("toggle_mod")

    @api_safe
    async def delete_mod(self, filename: str) -> Any:
        raise self._unsupported("delete_mod")


def _check_signal(signal: str) -> None:
    if signal not in POWER_SIGNALS:
        raise ApiError.malformed(f"unknown power signal '{signal}'")


class DirectBackend(ApiBackend):
    """Bespoke server-control API."""

    profile = "direct"

    @api_safe
    async def check_connection(self) -> bool:
        await self._request('GET', '/status')
        return True

    @api_safe
    async def get_server_status(self) -> ServerStatus:
        return ServerStatus.from_api(await self._request('GET', '/server/status') or {})

    @api_safe
    async def get_server_utilization(self) -> ServerUtilization:
        return ServerUtilization.from_api(await self._request('GET', '/server/utilization') or {})

    @api_safe
    async def power_action(self, signal: str) -> Any:
        _check_signal(signal)
        return await self._request('POST', f'/power/{signal}')

    @api_safe
    async def send_command(self, command: str) -> Any:
        return await self._request('POST', '/server/command', json={'command': command})

    @api_safe
    async def get_settings(self) -> List[SettingEntry]:
        payload = await self._request('GET', '/settings/get') or {}
        return [SettingEntry.from_api(item) for item in payload.get('data', [])]

    @api_safe
    async def update_setting(self, setting: str, value: str) -> Any:
        return await self._request('POST', '/settings/set', json={'setting': setting, 'value': value})

    @api_safe
    async def change_map(self, map_path: str) -> Any:
        return await self._request('POST', '/settings/set', json={'setting': "MAP", 'value': map_path})

    @api_safe
    async def list_mods(self) -> List[ModEntry]:
        payload = await self._request('GET', '/mods/list') or []
        return [ModEntry.from_api(item) for item in payload]

    @api_safe
    async def upload_mod(self, filename: str, content: bytes) -> Any:
        if not filename or not content:
            raise ApiError.malformed("mod upload requires a non-empty file")
        return await self._request('POST', '/mods/upload', files={'file': (filename, content)})

    @api_safe
    async def toggle_mod(self, filename: str) -> Any:
        return await self._request('POST', '/mods/toggle', json={'filename': filename})

    @api_safe
    async def delete_mod(self, filename: str) -> Any:
        return await self._request('POST', '/mods/delete', json={'filename': filename})


class PanelBackend(ApiBackend):
    """Generic hosting-panel client API, scoped to one server identifier."""

    profile = "panel"
    api_prefix = "/api/client"
    extra_headers = {'Accept': 'Application/vnd.pterodactyl.v1+json'}

    def __init__(self, config: ApiConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config, transport)
        self.server_path = f"/servers/{config.server_id}"

    async def _attributes(self, path: str) -> Dict[str, Any]:
        payload = await self._request('GET', path) or {}
        return payload.get('attributes') or {}

    @api_safe
    async def check_connection(self) -> bool:
        await self._request('GET', '/')
        return True

    @api_safe
    async def get_server_status(self) -> ServerStatus:
        return ServerStatus.from_panel(await self._attributes(self.server_path))

    @api_safe
    async def get_server_utilization(self) -> ServerUtilization:
        resources, server = await asyncio.gather(
            self._attributes(f"{self.server_path}/resources"),
            self._attributes(self.server_path),
        )
        return ServerUtilization.from_panel(resources, server)

    @api_safe
    async def power_action(self, signal: str) -> Any:
        _check_signal(signal)
        return await self._request('POST', f"{self.server_path}/power", json={'signal': signal})

    @api_safe
    async def send_command(self, command: str) -> Any:
        return await self._request('POST', f"{self.server_path}/command", json={'command': command})


BACKENDS = {
    "direct": DirectBackend,
    "panel": PanelBackend,
}


def create_backend(config: ApiConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> ApiBackend:
    """Build the client for the configured profile."""
    config.validate()
    return BACKENDS[config.profile](config, transport=transport)
