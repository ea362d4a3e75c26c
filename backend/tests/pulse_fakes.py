from __future__ import annotations

import asyncio
import io
from typing import Any

from PIL import Image

from pulse_core.models import Attachment, Message
from pulse_gateway.client import GatewayReply

SKIN_RGB = (205, 160, 140)
EYE_RGB = (60, 90, 200)
NEUTRAL_RGB = (90, 90, 90)


class FakeGateway:
    """Scripted gateway; ``hold()`` makes calls wait until ``release()``."""

    def __init__(self, replies: list[str] | None = None) -> None:
        self.replies = list(replies or ["ok"])
        self.calls: list[dict[str, Any]] = []
        self._gate: asyncio.Event | None = None

    def hold(self) -> None:
        self._gate = asyncio.Event()

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()

    async def complete(
        self,
        history: list[Message],
        user_text: str,
        attachments: list[Attachment] | None = None,
    ) -> GatewayReply:
        self.calls.append(
            {
                "history": [(message.role, message.text) for message in history],
                "user_text": user_text,
                "attachments": list(attachments or []),
            }
        )
        if self._gate is not None:
            await self._gate.wait()
        text = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return GatewayReply(text=text)


def image_bytes(
    color: tuple[int, int, int] = NEUTRAL_RGB,
    size: tuple[int, int] = (64, 48),
    *,
    fmt: str = "PNG",
    mode: str = "RGB",
    exif: Image.Exif | None = None,
) -> bytes:
    fill: Any = color if mode == "RGB" else (*color, 255)
    image = Image.new(mode, size, fill)
    buf = io.BytesIO()
    if exif is not None:
        image.save(buf, format=fmt, exif=exif)
    else:
        image.save(buf, format=fmt)
    return buf.getvalue()


def chat_completion(text: str) -> dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


async def wait_for(predicate, *, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")
