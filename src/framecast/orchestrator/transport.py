"""
Batch Transport

HTTP client for the capture server. One request per batch, sent in the
order the orchestrator hands them over; nothing is buffered or retried
here. Any failure surfaces as TransportError.
"""
from typing import Optional
import base64

import httpx

from ..config import Config
from ..errors import TransportError
from ..log import get_logger
from ..staging.stager import FrameBatch

log = get_logger("orchestrator.transport")

BATCH_ENDPOINT = "/upload-frame-batch"
FINALIZE_ENDPOINT = "/encode-from-batches"
PUBLISH_ENDPOINT = "/upload-enhanced-video"


def _error_details(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return body.get("details") or body.get("error") or str(body)
    return str(body)


def _json_body(response: httpx.Response, what: str) -> dict:
    try:
        body = response.json()
    except ValueError as e:
        raise TransportError(f"{what} reply is not JSON: {e}") from e
    if not isinstance(body, dict):
        raise TransportError(f"{what} reply is not a JSON object")
    return body


class BatchTransport:
    """Async client for the batch, finalize and publish endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url or Config.SERVER_URL
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or Config.HTTP_TIMEOUT_S,
        )

    async def __aenter__(self) -> "BatchTransport":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, url: str, what: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.post(url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{what} failed: {e}") from e

        if response.status_code >= 400:
            raise TransportError(
                f"{what} failed ({response.status_code}): {_error_details(response)}",
                status_code=response.status_code,
            )
        return response

    async def send_batch(self, batch: FrameBatch) -> dict:
        """Upload one batch. Returns the server's JSON reply."""
        response = await self._post(
            BATCH_ENDPOINT,
            f"Batch {batch.batch_number} upload",
            data={
                "sessionId": batch.session_id,
                "batchNumber": str(batch.batch_number),
                "startFrame": str(batch.start_frame),
                "frameCount": str(batch.frame_count),
                "width": str(batch.width),
                "height": str(batch.height),
            },
            files={"frameData": ("batch.raw", bytes(batch.payload), "application/octet-stream")},
        )
        body = _json_body(response, f"Batch {batch.batch_number} upload")
        log.debug(f"📤 Batch {batch.batch_number} delivered ({len(batch.payload)} bytes)")
        return body

    async def finalize(
        self,
        session_id: str,
        total_frames: int,
        fps: float,
        width: int,
        height: int,
    ) -> bytes:
        """Ask the server to encode the session. Returns the MP4 bytes."""
        response = await self._post(
            FINALIZE_ENDPOINT,
            "Encoding",
            json={
                "sessionId": session_id,
                "totalFrames": total_frames,
                "fps": fps,
                "width": width,
                "height": height,
            },
        )
        body = _json_body(response, "Encoding")
        try:
            return base64.b64decode(body["videoBase64"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Encoding reply has no usable video: {e}") from e

    async def publish(self, video: bytes, filename: str, owner_id: str) -> dict:
        """Upload a finished video to durable storage through the server."""
        response = await self._post(
            PUBLISH_ENDPOINT,
            "Publish",
            data={"ownerId": owner_id},
            files={"file": (filename, video, "video/mp4")},
        )
        return _json_body(response, "Publish")
