"""
Client for the third-party preview image host (Imgur-compatible API).

Each accepted revision uploads a renderable copy of the drawing. The host
answers with an asset id and a delete token; the token is the only way to
remove the asset later.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from omegaconf import DictConfig

from .errors import UpstreamError
from .utils import strip_data_uri

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreviewAsset:
    asset_id: str
    delete_token: str


class PreviewHostClient:
    """
    Synchronous client for upload and delete calls.

    Every call is bounded by ``timeout`` seconds. Non-success responses,
    network faults, timeouts and malformed bodies all raise UpstreamError.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Authorization": f"Client-ID {client_id}"},
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def upload(self, image_data: str) -> PreviewAsset:
        """Upload base64 image data, with or without a data-URI prefix."""
        try:
            response = self.client.post("/3/image", json={"image": strip_data_uri(image_data)})
            response.raise_for_status()
            data = response.json()["data"]
            asset = PreviewAsset(asset_id=str(data["id"]), delete_token=str(data["deletehash"]))
        except httpx.HTTPError as exc:
            logger.error(f"Preview upload failed: {exc}")
            raise UpstreamError(f"Preview upload failed: {exc}") from exc
        except (ValueError, KeyError, TypeError) as exc:
            logger.error(f"Preview host returned an unexpected upload response: {exc!r}")
            raise UpstreamError("Malformed preview upload response") from exc

        logger.info(f"Uploaded preview asset {asset.asset_id}")
        return asset

    def delete(self, delete_token: str) -> None:
        """Delete the asset identified by ``delete_token``."""
        try:
            response = self.client.delete(f"/3/image/{delete_token}")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(f"Preview delete failed: {exc}")
            raise UpstreamError(f"Preview delete failed: {exc}") from exc


def build_preview_host(config: DictConfig, transport: Optional[httpx.BaseTransport] = None) -> PreviewHostClient:
    settings = config.preview_host
    if not settings.client_id:
        logger.warning("PREVIEW_HOST_CLIENT_ID not configured, preview uploads will be rejected")
    return PreviewHostClient(
        settings.base_url,
        settings.client_id,
        timeout=float(settings.timeout_seconds),
        transport=transport,
    )
