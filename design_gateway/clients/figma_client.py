"""
Figma REST API client.

Thin request layer over HardenedHTTPClient: it knows the Figma endpoints and
auth header, nothing about rate limits, caching or cost. The caller's token
is passed on every call; no default credential exists.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from design_gateway.config import Settings
from design_gateway.utils.http_client import HardenedHTTPClient, TimeoutConfig
from design_gateway.utils.logging import get_logger
from design_gateway.utils.types import Provider

logger = get_logger(__name__)

IMAGE_FORMATS = ("jpg", "png", "svg", "pdf")


class FigmaClient:
    """Figma endpoints used by the gateway."""

    def __init__(self, http: HardenedHTTPClient):
        self.http = http

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {"X-Figma-Token": token}

    async def get_file(
        self,
        file_key: str,
        token: str,
        *,
        version: Optional[str] = None,
        ids: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if version:
            params["version"] = version
        if ids:
            params["ids"] = ",".join(ids)

        data = await self.http.get(
            f"/files/{quote(file_key, safe='')}",
            headers=self._headers(token),
            params=params or None,
        )
        logger.info("Figma file fetched", file_key=file_key, name=data.get("name"))
        return data

    async def get_images(
        self,
        file_key: str,
        node_ids: List[str],
        token: str,
        *,
        image_format: str = "png",
        scale: float = 1.0,
        version: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "ids": ",".join(node_ids),
            "format": image_format,
            "scale": str(scale),
        }
        if version:
            params["version"] = version

        data = await self.http.get(
            f"/images/{quote(file_key, safe='')}",
            headers=self._headers(token),
            params=params,
        )
        logger.info(
            "Figma images rendered",
            file_key=file_key,
            image_count=len(data.get("images") or {}),
        )
        return data

    async def get_team_components(self, team_id: str, token: str) -> Dict[str, Any]:
        return await self.http.get(
            f"/teams/{quote(team_id, safe='')}/components",
            headers=self._headers(token),
        )

    async def get_comments(self, file_key: str, token: str) -> Dict[str, Any]:
        return await self.http.get(
            f"/files/{quote(file_key, safe='')}/comments",
            headers=self._headers(token),
        )

    async def get_me(self, token: str) -> Dict[str, Any]:
        return await self.http.get("/me", headers=self._headers(token))

    async def close(self) -> None:
        await self.http.close()


def create_figma_client(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> FigmaClient:
    timeout_config = TimeoutConfig(
        connect_timeout=settings.http_connect_timeout_seconds,
        read_timeout=settings.figma_timeout_seconds,
        write_timeout=30.0,
        pool_timeout=5.0,
    )
    return FigmaClient(
        HardenedHTTPClient(
            Provider.FIGMA.value,
            settings.figma_api_base_url,
            timeout_config=timeout_config,
            max_request_size_bytes=settings.max_request_size_mb * 1024 * 1024,
            transport=transport,
        )
    )
