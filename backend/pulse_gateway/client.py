from __future__ import annotations

import asyncio
import json
import logging
import socket
from dataclasses import dataclass
from typing import Any

import httpx

from pulse_core.config import PulseSettings
from pulse_core.models import Attachment, Message
from pulse_core.notices import NoticeChannel

from .errors import (
    ConfigurationError,
    GatewayError,
    MalformedRequest,
    MalformedResponse,
    NetworkError,
    RateLimited,
)
from .prompt import PromptBuilder, PromptBundle

logger = logging.getLogger(__name__)


@dataclass
class GatewayReply:
    text: str
    failure: GatewayError | None = None
    dropped_images: int = 0

    @property
    def ok(self) -> bool:
        return self.failure is None


def provider_error_message(response: httpx.Response) -> str:
    message = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return message or f"HTTP {response.status_code}"


def coerce_completion_text(response_json: Any) -> str:
    if not isinstance(response_json, dict):
        raise MalformedResponse("ai response not in expected format.")
    choices = response_json.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise MalformedResponse("ai response not in expected format.")
    message = choices[0].get("message")
    if not isinstance(message, dict):
        raise MalformedResponse("ai response not in expected format.")
    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text":
                text_value = item.get("text")
                if isinstance(text_value, str):
                    parts.append(text_value)
        return "\n".join(parts).strip()
    return ""


def _connect_sub_kind(exc: BaseException) -> str:
    cause: BaseException | None = exc
    while cause is not None:
        if isinstance(cause, socket.gaierror):
            return NetworkError.OFFLINE
        cause = cause.__cause__ or cause.__context__
    return NetworkError.UNREACHABLE


class LanguageModelGateway:
    """One chat-completions request per turn, failures folded into fallbacks."""

    def __init__(
        self,
        settings: PulseSettings,
        *,
        notices: NoticeChannel | None = None,
        prompts: PromptBuilder | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.notices = notices
        self.prompts = prompts or PromptBuilder(
            image_dimension=settings.request_image_dimension,
            image_max_bytes=settings.request_image_max_bytes,
        )
        self._transport = transport

    async def complete(
        self,
        history: list[Message],
        user_text: str,
        attachments: list[Attachment] | None = None,
    ) -> GatewayReply:
        dropped = 0
        try:
            bundle = await asyncio.to_thread(self.prompts.build, history, user_text, list(attachments or []))
            dropped = bundle.dropped_images
            text = await self._request(bundle)
        except GatewayError as exc:
            logger.warning(f"chat llm call failed ({exc.kind}): {exc}")
            if self.notices is not None:
                self.notices.post(exc.notice, error=True)
            return GatewayReply(text=exc.fallback_reply, failure=exc, dropped_images=dropped)
        except (OSError, ValueError) as exc:
            failure = MalformedRequest(f"request could not be built: {exc}")
            logger.warning(f"chat llm call failed ({failure.kind}): {exc}")
            if self.notices is not None:
                self.notices.post(failure.notice, error=True)
            return GatewayReply(text=failure.fallback_reply, failure=failure, dropped_images=dropped)
        logger.info(f"chat llm reply received: {len(text)} chars, {bundle.image_count} images")
        return GatewayReply(text=text, dropped_images=dropped)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }
        if self.settings.site_url:
            headers["HTTP-Referer"] = self.settings.site_url
        if self.settings.app_name:
            headers["X-Title"] = self.settings.app_name
        return headers

    def _payload(self, bundle: PromptBundle) -> bytes:
        payload = {
            "model": self.settings.model,
            "messages": bundle.messages,
            "max_tokens": 350,
            "temperature": 0.7,
        }
        try:
            return json.dumps(payload, ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise MalformedRequest(f"request could not be serialized: {exc}") from exc

    async def _request(self, bundle: PromptBundle) -> str:
        if not self.settings.api_key:
            raise ConfigurationError("i can't find my api key (PULSE_LLM_API_KEY).")
        body = self._payload(bundle)
        timeout = httpx.Timeout(self.settings.request_timeout_seconds, connect=8.0)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.settings.base_url}/chat/completions",
                    headers=self._headers(),
                    content=body,
                )
        except httpx.TimeoutException as exc:
            raise NetworkError("request timed out.", sub_kind=NetworkError.TIMEOUT) from exc
        except httpx.ConnectError as exc:
            sub_kind = _connect_sub_kind(exc)
            raise NetworkError(f"network error: {exc}", sub_kind=sub_kind) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"network error: {exc}", sub_kind=NetworkError.UNREACHABLE) from exc

        self._raise_for_status(response)
        try:
            completion_payload = response.json()
        except ValueError as exc:
            raise MalformedResponse("ai response not in expected format.") from exc
        text = coerce_completion_text(completion_payload)
        if not text:
            raise MalformedResponse("ai response empty. try again.")
        return text

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = provider_error_message(response)[:200]
        if status == 401:
            raise ConfigurationError("unauthorized (401): check your api key.", status_code=status)
        if status == 403:
            raise ConfigurationError(f"forbidden (403): key lacks access to {self.settings.model}.", status_code=status)
        if status == 429:
            raise RateLimited("rate limit (429): too many requests or out of quota.", status_code=status)
        if status in {408, 504}:
            raise NetworkError(f"http {status}: {detail}", sub_kind=NetworkError.TIMEOUT, status_code=status)
        if status >= 500:
            raise NetworkError(f"http {status}: {detail}", sub_kind=NetworkError.UNAVAILABLE, status_code=status)
        raise MalformedRequest(f"http {status}: {detail}", status_code=status)
