"""GitHub REST client for exporting generated files into a new repository."""

import base64
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from design_gateway.config import Settings
from design_gateway.utils.http_client import HardenedHTTPClient, TimeoutConfig
from design_gateway.utils.logging import get_logger
from design_gateway.utils.types import Provider

logger = get_logger(__name__)

GITHUB_ACCEPT = "application/vnd.github+json"


class GitHubClient:
    def __init__(self, http: HardenedHTTPClient):
        self.http = http

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Accept": GITHUB_ACCEPT}

    async def get_user(self, token: str) -> Dict[str, Any]:
        return await self.http.get("/user", headers=self._headers(token))

    async def create_repository(
        self,
        name: str,
        token: str,
        *,
        description: str = "",
        private: bool = False,
    ) -> Dict[str, Any]:
        """Create an empty repository owned by the authenticated user."""
        repo = await self.http.post(
            "/user/repos",
            headers=self._headers(token),
            json_body={
                "name": name,
                "description": description,
                "private": private,
                "auto_init": False,
            },
        )
        logger.info("GitHub repository created", repo=repo.get("full_name"), private=private)
        return repo

    async def put_file(
        self,
        full_name: str,
        path: str,
        content: str,
        token: str,
        *,
        message: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create one file through the contents API (content is base64-encoded)."""
        encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
        return await self.http.put(
            f"/repos/{full_name}/contents/{quote(path.lstrip('/'), safe='/')}",
            headers=self._headers(token),
            json_body={"message": message or f"Add {path}", "content": encoded},
        )

    async def close(self) -> None:
        await self.http.close()


def create_github_client(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> GitHubClient:
    timeout_config = TimeoutConfig(
        connect_timeout=settings.http_connect_timeout_seconds,
        read_timeout=settings.github_timeout_seconds,
        write_timeout=30.0,
        pool_timeout=5.0,
    )
    return GitHubClient(
        HardenedHTTPClient(
            Provider.GITHUB.value,
            settings.github_api_base_url,
            timeout_config=timeout_config,
            max_request_size_bytes=settings.max_request_size_mb * 1024 * 1024,
            transport=transport,
        )
    )
