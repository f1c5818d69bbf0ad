from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import aiohttp

log = logging.getLogger("telegram")

API_URL = "https://api.telegram.org/bot{token}/sendMessage"
MAX_MESSAGE_CHARS = 4096


def chunk_text(text: str, limit: int = MAX_MESSAGE_CHARS) -> List[str]:
    """Split on line boundaries so each part fits one Telegram message."""
    if len(text) <= limit:
        return [text]
    parts: List[str] = []
    buf = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if buf:
                parts.append(buf)
                buf = ""
            parts.append(line[:limit])
            line = line[limit:]
        candidate = f"{buf}\n{line}" if buf else line
        if len(candidate) > limit:
            parts.append(buf)
            buf = line
        else:
            buf = candidate
    if buf:
        parts.append(buf)
    return parts


class TelegramNotifier:
    """Alert delivery to a fixed set of chats. Never raises on delivery errors."""

    def __init__(
        self,
        token: str,
        chat_ids: List[str],
        *,
        disable_web_page_preview: bool = True,
        timeout_s: float = 30.0,
        max_retry_after_s: float = 30.0,
    ):
        self.token = (token or "").strip()
        self.chat_ids = [str(x).strip() for x in (chat_ids or []) if str(x).strip()]
        self.disable_web_page_preview = disable_web_page_preview
        self.timeout_s = timeout_s
        self.max_retry_after_s = max_retry_after_s

    def enabled(self) -> bool:
        return bool(self.token) and bool(self.chat_ids)

    async def send(self, text: str, chat_ids: Optional[List[str]] = None) -> int:
        """Returns the number of chats that received every part of `text`."""
        if not self.enabled():
            return 0
        targets = [str(x).strip() for x in (chat_ids or self.chat_ids) if str(x).strip()]
        parts = chunk_text(text)
        url = API_URL.format(token=self.token)

        delivered = 0
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s)) as sess:
            for chat_id in targets:
                ok = True
                for part in parts:
                    ok = await self._post(sess, url, chat_id, part)
                    if not ok:
                        break
                delivered += int(ok)
        if delivered < len(targets):
            log.warning("telegram_partial_delivery delivered=%d targets=%d", delivered, len(targets))
        return delivered

    async def _post(self, sess: aiohttp.ClientSession, url: str, chat_id: str, text: str) -> bool:
        payload = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": self.disable_web_page_preview,
        }
        for attempt in (1, 2):
            try:
                async with sess.post(url, json=payload) as resp:
                    if resp.status == 200:
                        return True
                    body = await resp.json(content_type=None) if resp.status == 429 else None
                    if resp.status == 429 and attempt == 1:
                        retry_after = float(((body or {}).get("parameters") or {}).get("retry_after", 1))
                        wait = min(retry_after, self.max_retry_after_s)
                        log.warning("telegram_rate_limited chat_id=%s retry_after=%.1fs", chat_id, wait)
                        await asyncio.sleep(wait)
                        continue
                    txt = str(body) if body is not None else await resp.text()
                    log.warning("telegram_send_failed chat_id=%s status=%s body=%s", chat_id, resp.status, txt[:2000])
                    return False
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
                log.warning("telegram_send_exception chat_id=%s err=%s", chat_id, e)
                return False
        return False
