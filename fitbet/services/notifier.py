from __future__ import annotations
from dataclasses import dataclass
from typing import Protocol, Sequence
import httpx
import structlog

from fitbet.errors import CollaboratorError

log = structlog.get_logger()


@dataclass(frozen=True)
class Affordance:
    """A one-tap action attached to a message (an inline button on Telegram)."""
    label: str
    action: str


class Notifier(Protocol):
    async def send(self, recipient_id: int, text: str, affordances: Sequence[Affordance] | None = None) -> int: ...

    async def edit_affordances(self, recipient_id: int, message_id: int, affordances: Sequence[Affordance] | None) -> None: ...

    async def delete_message(self, recipient_id: int, message_id: int) -> None: ...


class TelegramNotifier:
    """Bot API client. Raises CollaboratorError on transport or API failures."""

    def __init__(self, token: str, api_base: str = "https://api.telegram.org", client: httpx.AsyncClient | None = None):
        self._base = f"{api_base.rstrip('/')}/bot{token}"
        self._client = client or httpx.AsyncClient(timeout=10.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _markup(affordances: Sequence[Affordance] | None) -> dict:
        # one button per row
        return {"inline_keyboard": [[{"text": a.label, "callback_data": a.action}] for a in affordances or ()]}

    async def _call(self, method: str, payload: dict) -> dict:
        try:
            r = await self._client.post(f"{self._base}/{method}", json=payload)
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorError(f"telegram {method} failed: {e}") from e
        if not data.get("ok"):
            raise CollaboratorError(f"telegram {method} rejected: {data.get('description')}")
        return data

    async def send(self, recipient_id: int, text: str, affordances: Sequence[Affordance] | None = None) -> int:
        payload: dict = {"chat_id": recipient_id, "text": text}
        if affordances:
            payload["reply_markup"] = self._markup(affordances)
        data = await self._call("sendMessage", payload)
        return int(data["result"]["message_id"])

    async def edit_affordances(self, recipient_id: int, message_id: int, affordances: Sequence[Affordance] | None) -> None:
        await self._call(
            "editMessageReplyMarkup",
            {"chat_id": recipient_id, "message_id": message_id, "reply_markup": self._markup(affordances)},
        )

    async def delete_message(self, recipient_id: int, message_id: int) -> None:
        await self._call("deleteMessage", {"chat_id": recipient_id, "message_id": message_id})


class LogNotifier:
    """Used when no bot token is configured: messages only go to the log."""

    def __init__(self):
        self._next_id = 0

    async def send(self, recipient_id: int, text: str, affordances: Sequence[Affordance] | None = None) -> int:
        self._next_id += 1
        log.info("notify_logged", recipient_id=recipient_id, text=text, actions=[a.action for a in affordances or ()])
        return self._next_id

    async def edit_affordances(self, recipient_id: int, message_id: int, affordances: Sequence[Affordance] | None) -> None:
        return None

    async def delete_message(self, recipient_id: int, message_id: int) -> None:
        return None


class SafeNotifier:
    """
    Best-effort wrapper. Delivery is advisory: failures are logged and swallowed,
    and `send` returns None instead of a message id.
    """

    def __init__(self, inner: Notifier):
        self.inner = inner

    async def send(self, recipient_id: int, text: str, affordances: Sequence[Affordance] | None = None) -> int | None:
        try:
            return await self.inner.send(recipient_id, text, affordances)
        except Exception as e:
            log.warning("notify_failed", op="send", recipient_id=recipient_id, error=str(e))
            return None

    async def edit_affordances(self, recipient_id: int, message_id: int, affordances: Sequence[Affordance] | None) -> bool:
        try:
            await self.inner.edit_affordances(recipient_id, message_id, affordances)
            return True
        except Exception as e:
            log.warning("notify_failed", op="edit_affordances", recipient_id=recipient_id, message_id=message_id, error=str(e))
            return False

    async def delete_message(self, recipient_id: int, message_id: int) -> bool:
        try:
            await self.inner.delete_message(recipient_id, message_id)
            return True
        except Exception as e:
            log.warning("notify_failed", op="delete_message", recipient_id=recipient_id, message_id=message_id, error=str(e))
            return False


def safe(notifier: Notifier | SafeNotifier) -> SafeNotifier:
    return notifier if isinstance(notifier, SafeNotifier) else SafeNotifier(notifier)


def build_notifier(token: str, api_base: str) -> Notifier:
    if token:
        return TelegramNotifier(token, api_base)
    return LogNotifier()
