"""Resolution of raw chat attachments into model content blocks."""

from __future__ import annotations

import base64
import binascii
import logging

import httpx

from agent_runtime.config import AttachmentConfig
from agent_runtime.types import Attachment, ContentBlock, FileBlock, ImageBlock, TextBlock

logger = logging.getLogger(__name__)

_TEXT_MIME_TYPES = {
    "application/json",
    "application/xml",
    "application/x-yaml",
    "application/yaml",
    "application/javascript",
    "application/sql",
}
_TEXT_EXTENSIONS = (".txt", ".md", ".markdown", ".csv", ".tsv", ".json", ".xml", ".yaml", ".yml", ".log", ".html")
_DOCUMENT_MIME_TYPES = {"application/pdf"}


class AttachmentError(Exception):
    """An attachment could not be fetched or decoded."""


def is_image(attachment: Attachment) -> bool:
    return attachment.mime_type.lower().startswith("image/")


def is_text_like(attachment: Attachment) -> bool:
    mime_type = attachment.mime_type.lower().split(";")[0].strip()
    if mime_type.startswith("text/") or mime_type in _TEXT_MIME_TYPES:
        return True
    return attachment.name.lower().endswith(_TEXT_EXTENSIONS)


def is_document(attachment: Attachment) -> bool:
    return attachment.mime_type.lower() in _DOCUMENT_MIME_TYPES


def placeholder_block(attachment: Attachment, reason: str | None = None) -> TextBlock:
    suffix = f": {reason}" if reason else ""
    return TextBlock(f"[Attachment: {attachment.name} ({attachment.mime_type}) could not be loaded{suffix}]")


class AttachmentResolver:
    """Turns attachments into content blocks, degrading failures to placeholders.

    Images become base64 `ImageBlock`s, PDFs become `FileBlock`s and
    text-like files are decoded and truncated to `max_text_chars`. Any other
    type, any fetch/decode failure and any payload above `max_bytes` becomes
    a textual placeholder naming the attachment; one bad attachment never
    fails the request.
    """

    def __init__(
        self,
        config: AttachmentConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or AttachmentConfig()
        self._client = client

    async def resolve(self, attachment: Attachment) -> ContentBlock:
        if not (is_image(attachment) or is_document(attachment) or is_text_like(attachment)):
            logger.info("Unsupported attachment type %s for %s", attachment.mime_type, attachment.name)
            return TextBlock(f"[Attachment: {attachment.name} ({attachment.mime_type}) is not a supported file type]")

        try:
            payload = await self._load(attachment)
        except AttachmentError as exc:
            logger.warning("Attachment %s could not be resolved: %s", attachment.name, exc)
            return placeholder_block(attachment)

        if is_image(attachment):
            return ImageBlock(media_type=attachment.mime_type, data=_b64(payload))
        if is_document(attachment):
            return FileBlock(name=attachment.name, media_type=attachment.mime_type, data=_b64(payload))
        return TextBlock(self._render_text(attachment, payload))

    async def resolve_all(self, attachments: list[Attachment]) -> list[ContentBlock]:
        return [await self.resolve(attachment) for attachment in attachments]

    async def build_content(self, text: str, attachments: list[Attachment]) -> str | list[ContentBlock]:
        """Combine message text and its attachments; plain text when there are none."""
        if not attachments:
            return text
        blocks = await self.resolve_all(attachments)
        if text:
            blocks.append(TextBlock(text))
        return blocks

    async def _load(self, attachment: Attachment) -> bytes:
        if attachment.data is not None:
            try:
                payload = base64.b64decode(attachment.data, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise AttachmentError(f"invalid base64 payload: {exc}") from exc
        elif attachment.url:
            payload = await self._fetch(attachment.url)
        else:
            raise AttachmentError("attachment has neither url nor data")

        if len(payload) > self.config.max_bytes:
            raise AttachmentError(f"payload of {len(payload)} bytes exceeds limit of {self.config.max_bytes}")
        return payload

    async def _fetch(self, url: str) -> bytes:
        try:
            if self._client is not None:
                return await self._read_bounded(self._client, url)
            async with httpx.AsyncClient(
                timeout=self.config.fetch_timeout_seconds,
                follow_redirects=True,
            ) as client:
                return await self._read_bounded(client, url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise AttachmentError(str(exc) or type(exc).__name__) from exc

    async def _read_bounded(self, client: httpx.AsyncClient, url: str) -> bytes:
        """Stream the body, giving up as soon as it passes `max_bytes`."""
        limit = self.config.max_bytes
        async with client.stream("GET", url, timeout=self.config.fetch_timeout_seconds) as response:
            response.raise_for_status()
            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > limit:
                raise AttachmentError(f"declared size of {declared} bytes exceeds limit of {limit}")
            payload = bytearray()
            async for chunk in response.aiter_bytes():
                payload.extend(chunk)
                if len(payload) > limit:
                    raise AttachmentError(f"payload exceeds limit of {limit} bytes")
        return bytes(payload)

    def _render_text(self, attachment: Attachment, payload: bytes) -> str:
        text = payload.decode("utf-8", errors="replace")
        limit = self.config.max_text_chars
        if len(text) > limit:
            text = text[:limit] + f"\n... [truncated, {len(text) - limit} more characters]"
        return f"[File: {attachment.name}]\n{text}"


def _b64(payload: bytes) -> str:
    return base64.b64encode(payload).decode("ascii")
