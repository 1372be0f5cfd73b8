"""Web tools: fetch a URL (requests + BeautifulSoup) and search (Tavily or DuckDuckGo).

DuckDuckGo through ``ddgs`` needs no API key and is the default backend.
Tavily takes over when ``TAVILY_API_KEY`` is configured.
"""

import json
import re
import time
from typing import List, Optional
from urllib.parse import quote_plus, urlparse

import requests
from bs4 import BeautifulSoup
from ddgs import DDGS
from tavily import TavilyClient

from ..errors import WebOpsError
from ..logger import get_logger

_log = get_logger(__name__)

_MULTI_NEWLINE_RE = re.compile(r"\n{3,}")
_MULTI_SPACE_RE = re.compile(r"[ \t]{2,}")


def alternative_search_urls(query: str) -> List[str]:
    q = quote_plus(query)
    return [
        f"https://www.google.com/search?q={q}",
        f"https://www.bing.com/search?q={q}",
        f"https://search.brave.com/search?q={q}",
    ]


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text("\n")
    lines = (_MULTI_SPACE_RE.sub(" ", line).strip() for line in text.splitlines())
    return _MULTI_NEWLINE_RE.sub("\n\n", "\n".join(lines)).strip()


class WebOps:
    TIMEOUT = 30
    MAX_CONTENT_LENGTH = 10000
    USER_AGENT = "groq-agent/0.3 (+python-requests)"

    _RETRYABLE_STATUS = {429, 500, 502, 503}

    def __init__(self, tavily_api_key: Optional[str] = None):
        self._session: Optional[requests.Session] = None
        self._tavily = TavilyClient(api_key=tavily_api_key) if tavily_api_key else None

    @property
    def backend(self) -> str:
        return "tavily" if self._tavily is not None else "duckduckgo"

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({
                "User-Agent": self.USER_AGENT,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            })
        return self._session

    def _request_with_retry(self, url: str, *, max_retries: int = 2) -> requests.Response:
        """GET with exponential backoff on 429/5xx and connection errors."""
        session = self._get_session()
        for attempt in range(1 + max_retries):
            try:
                resp = session.get(url, timeout=self.TIMEOUT, allow_redirects=True)
                if resp.status_code not in self._RETRYABLE_STATUS or attempt == max_retries:
                    resp.raise_for_status()
                    return resp
                _log.debug("HTTP %s from %s, retrying", resp.status_code, url)
            except (requests.ConnectionError, requests.Timeout):
                if attempt == max_retries:
                    raise
            time.sleep(2 ** attempt)
        raise WebOpsError("web_fetch", f"Failed to fetch URL: {url}")

    # ── fetch ──

    def fetch(self, url: str) -> str:
        parsed = urlparse(url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise WebOpsError(
                "web_fetch",
                f"Invalid URL protocol: {parsed.scheme or '(none)'}. Only HTTP and HTTPS are supported.",
            )

        try:
            resp = self._request_with_retry(url)
        except requests.Timeout:
            raise WebOpsError("web_fetch", f"Request timeout while fetching URL: {url}")
        except requests.ConnectionError:
            raise WebOpsError("web_fetch", f"Could not connect to URL: {url}")
        except requests.HTTPError as e:
            r = e.response
            status = f"{r.status_code}: {r.reason}" if r is not None else str(e)
            raise WebOpsError("web_fetch", f"HTTP {status} for URL: {url}")
        except requests.RequestException as e:
            raise WebOpsError("web_fetch", f"Failed to fetch URL: {e}")

        content_type = resp.headers.get("Content-Type", "")
        if "text/html" in content_type or "xhtml" in content_type:
            body = self._truncate(html_to_text(resp.text), "Content")
        elif "application/json" in content_type:
            try:
                body = json.dumps(resp.json(), indent=2, ensure_ascii=False)
            except ValueError:
                body = resp.text
            body = self._truncate(body, "JSON")
        elif content_type.startswith("text/") or "xml" in content_type:
            body = self._truncate(resp.text, "Content")
        else:
            body = "[Binary or unsupported content type]"

        return (f"URL: {url}\nStatus: {resp.status_code} {resp.reason}\n"
                f"Content-Type: {content_type}\n\n{body}")

    def _truncate(self, text: str, what: str) -> str:
        if len(text) > self.MAX_CONTENT_LENGTH:
            return text[:self.MAX_CONTENT_LENGTH] + f"\n\n[{what} truncated due to length]"
        return text

    # ── search ──

    def search(self, query: str, limit: int = 5) -> str:
        query = (query or "").strip()
        if not query:
            raise WebOpsError("web_search", "No search query provided")
        limit = max(1, min(int(limit or 5), 20))

        try:
            if self._tavily is not None:
                results = self._search_tavily(query, limit)
            else:
                results = self._search_ddg(query, limit)
        except Exception as e:
            _log.info("%s search failed: %s", self.backend, e)
            raise WebOpsError(
                "web_search",
                "Web search failed. You can try these search URLs with the web_fetch tool:\n"
                + "\n".join(alternative_search_urls(query)),
            )
        return self.format_results(query, results)

    @staticmethod
    def _search_ddg(query: str, limit: int) -> List[dict]:
        raw = DDGS().text(query, max_results=limit) or []
        return [
            {"title": r.get("title", ""), "url": r.get("href", ""), "snippet": r.get("body", "")}
            for r in raw
        ]

    def _search_tavily(self, query: str, limit: int) -> List[dict]:
        result = self._tavily.search(query=query, max_results=limit)
        return [
            {"title": r.get("title", ""), "url": r.get("url", ""), "snippet": r.get("content", "")}
            for r in (result or {}).get("results", [])
        ]

    @staticmethod
    def format_results(query: str, results: List[dict]) -> str:
        if not results:
            return (f'No search results found for "{query}". You may want to try rephrasing '
                    f"your search or use the web_fetch tool with a specific URL.")
        lines = [f'Search results for "{query}":\n']
        for i, r in enumerate(results, 1):
            snippet = r.get("snippet") or ""
            if len(snippet) > 500:
                snippet = snippet[:500] + "..."
            lines.append(f"{i}. {r.get('title') or 'Untitled'}")
            lines.append(f"   URL: {r.get('url', '')}")
            lines.append(f"   {snippet}\n")
        return "\n".join(lines).strip()
