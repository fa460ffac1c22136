"""axon_agent.web

Page fetch for `browse_url`: HTTP GET over httpx, main-content extraction with
readability-lxml (regex HTML->text when that fails) and a short summary the
model can read.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx
import lxml.html
from readability import Document

from .errors import ToolExecutionError, ToolTimeoutError

_LOG = logging.getLogger("axon_agent.web")

_USER_AGENT = "axon-agent/1.0"
_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,text/plain;q=0.8,*/*;q=0.7"


@dataclass(frozen=True)
class PageSummary:
    url: str
    final_url: str
    status_code: int
    title: str
    text: str
    truncated: bool = False

    def summary(self) -> str:
        head = f"{self.title} ({self.final_url})" if self.title else self.final_url
        body = self.text or "(no readable text)"
        if self.truncated:
            body += " ..."
        return f"{head}\n\n{body}"


def html_title(html_text: str) -> str:
    m = re.search(r"(?is)<title[^>]*>(.*?)</title>", html_text or "")
    if not m:
        return ""
    return re.sub(r"\s+", " ", html.unescape(m.group(1))).strip()


def html_to_text(html_text: str) -> str:
    t = re.sub(r"(?is)<(script|style|noscript|head)\b.*?>.*?</\1>", " ", html_text or "")
    t = re.sub(r"(?i)<br\s*/?>|</(p|div|li|h[1-6]|tr)>", "\n", t)
    t = re.sub(r"(?s)<[^>]+>", " ", t)
    t = html.unescape(t)
    t = re.sub(r"[ \t\r\f\v]+", " ", t)
    t = re.sub(r" *\n *", "\n", t)
    t = re.sub(r"\n{3,}", "\n\n", t)
    return t.strip()


def readable_text(html_text: str) -> str:
    """Main content of the page (readability), or the whole page as text if that fails."""

    try:
        summary_html = Document(html_text or "").summary(html_partial=True) or ""
        txt = lxml.html.fromstring(summary_html).text_content() or ""
    except Exception as e:  # noqa: BLE001
        _LOG.debug("readability_failed error=%s", f"{type(e).__name__}: {e}")
        return html_to_text(html_text)
    txt = re.sub(r"[ \t\r\f\v]+", " ", txt)
    txt = re.sub(r" *\n *", "\n", txt)
    txt = re.sub(r"\n{3,}", "\n\n", txt).strip()
    return txt or html_to_text(html_text)


class PageFetcher:
    def __init__(
        self,
        *,
        timeout_s: float = 20.0,
        max_chars: int = 4000,
        max_redirects: int = 8,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._timeout_s = float(timeout_s)
        self._max_chars = int(max_chars)
        self._max_redirects = int(max_redirects)
        self._transport = transport

    def fetch(self, url: str) -> PageSummary:
        if not isinstance(url, str) or not url.strip():
            raise ValueError("url must be a non-empty string")
        url = url.strip()
        if not re.match(r"(?i)^https?://", url):
            raise ToolExecutionError("browse_url", f"unsupported URL scheme: {url}")

        try:
            with httpx.Client(
                timeout=self._timeout_s,
                follow_redirects=True,
                max_redirects=self._max_redirects,
                headers={"User-Agent": _USER_AGENT, "Accept": _ACCEPT},
                transport=self._transport,
            ) as client:
                r = client.get(url)
        except httpx.TimeoutException as e:
            raise ToolTimeoutError("browse_url", self._timeout_s) from e
        except httpx.HTTPError as e:
            raise ToolExecutionError("browse_url", f"{type(e).__name__}: {e}") from e

        if r.status_code >= 400:
            raise ToolExecutionError("browse_url", f"HTTP {r.status_code} for {url}")

        ctype = (r.headers.get("content-type") or "").lower()
        body = r.text
        if "html" in ctype or body.lstrip()[:1] == "<":
            title = html_title(body)
            text = readable_text(body)
        else:
            title = ""
            text = body.strip()

        truncated = len(text) > self._max_chars
        if truncated:
            text = text[: self._max_chars].rstrip()
        _LOG.info("browse_ok url=%s status=%d chars=%d", url, r.status_code, len(text))
        return PageSummary(
            url=url,
            final_url=str(r.url),
            status_code=int(r.status_code),
            title=title,
            text=text,
            truncated=truncated,
        )
