"""Hetzner Robot webservice client for dedicated servers."""

import base64
import os
from typing import Any

import httpx

from shared.logging import get_logger
from shared.schemas.robot import RobotErrorBody, RobotRescue, RobotReset, RobotServer, RobotSSHKey

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://robot-ws.your-server.de"


class RobotAPIError(Exception):
    """Robot answered with a non-2xx status.

    The message spells the error code in lower-case words
    ("RATE_LIMIT_EXCEEDED" -> "rate limit exceeded"), which is what callers
    match on to detect throttling.
    """

    def __init__(self, method: str, path: str, status_code: int, code: str, message: str):
        self.method = method
        self.path = path
        self.status_code = status_code
        self.code = code
        self.message = message
        readable_code = code.replace("_", " ").lower()
        text = f"robot {method} {path} failed with {status_code} {readable_code}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)


class RobotClient:
    """Client for the Robot webservice."""

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        """Initialize Robot client.

        Args:
            username: Robot webservice user. Defaults to ROBOT_USER env var.
            password: Robot webservice password. Defaults to ROBOT_PASSWORD env var.
            base_url: Webservice URL. Defaults to the public Robot endpoint.
            timeout: HTTP timeout in seconds.
        """
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.username = username or os.getenv("ROBOT_USER")
        self.password = password or os.getenv("ROBOT_PASSWORD")
        self.timeout = timeout
        self._auth_header: str | None = None
        self._client: httpx.AsyncClient | None = None

        if not self.username or not self.password:
            logger.warning(
                "robot_credentials_missing",
                username_set=bool(self.username),
                password_set=bool(self.password),
            )

    def _get_auth_header(self) -> dict[str, str]:
        """Construct Basic Auth header."""
        if not self._auth_header:
            if not self.username or not self.password:
                raise ValueError("Robot credentials not set (username/password)")

            auth_str = f"{self.username}:{self.password}"
            encoded_auth = base64.b64encode(auth_str.encode()).decode()
            self._auth_header = f"Basic {encoded_auth}"
        return {"Authorization": self._auth_header}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        client = await self._get_client()
        resp = await client.request(method, path, headers=self._get_auth_header(), **kwargs)
        if resp.is_error:
            raise self._error_from_response(method, path, resp)
        return resp.json()

    @staticmethod
    def _error_from_response(method: str, path: str, resp: httpx.Response) -> RobotAPIError:
        try:
            body = RobotErrorBody.model_validate(resp.json().get("error") or {})
        except (ValueError, AttributeError):
            body = RobotErrorBody(status=resp.status_code, message=resp.text[:200])

        logger.warning(
            "robot_request_failed",
            method=method,
            path=path,
            status_code=resp.status_code,
            code=body.code,
        )
        return RobotAPIError(method, path, resp.status_code, body.code, body.message)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def list_servers(self) -> list[RobotServer]:
        """List all dedicated servers of the account."""
        data = await self._request("GET", "/server")
        return [RobotServer.model_validate(item["server"]) for item in data]

    async def get_server(self, server_ip: str) -> RobotServer:
        """Get a single server by its main IP."""
        data = await self._request("GET", f"/server/{server_ip}")
        return RobotServer.model_validate(data["server"])

    async def set_server_name(self, server_ip: str, name: str) -> RobotServer:
        """Rewrite the server name.

        There is no compare-and-swap on this endpoint; the last writer wins.
        """
        data = await self._request("POST", f"/server/{server_ip}", data={"server_name": name})
        logger.info("robot_server_renamed", server_ip=server_ip, server_name=name)
        return RobotServer.model_validate(data["server"])

    async def activate_rescue(
        self, server_ip: str, fingerprint: str, rescue_os: str = "linux"
    ) -> RobotRescue:
        """Arm the rescue system for the next boot, authorized with the given key."""
        data = await self._request(
            "POST",
            f"/boot/{server_ip}/rescue",
            data={"os": rescue_os, "authorized_key": fingerprint},
        )
        logger.info("robot_rescue_activated", server_ip=server_ip, rescue_os=rescue_os)
        return RobotRescue.model_validate(data["rescue"])

    async def reset_server(self, server_ip: str, reset_type: str = "hw") -> RobotReset:
        """Trigger a reset of the given type (hw, sw, power, man)."""
        data = await self._request("POST", f"/reset/{server_ip}", data={"type": reset_type})
        logger.info("robot_server_reset", server_ip=server_ip, reset_type=reset_type)
        return RobotReset.model_validate(data["reset"])

    async def list_ssh_keys(self) -> list[RobotSSHKey]:
        """List stored SSH keys.

        Robot answers 404 NOT_FOUND when the account has no keys at all.
        """
        try:
            data = await self._request("GET", "/key")
        except RobotAPIError as e:
            if e.status_code == httpx.codes.NOT_FOUND:
                return []
            raise
        return [RobotSSHKey.model_validate(item["key"]) for item in data]
