from __future__ import annotations

import ssl
import urllib.parse
from urllib.error import HTTPError, URLError
from urllib.request import HTTPRedirectHandler, HTTPSHandler, Request, build_opener

from .config import SandboxConfig


class HttpClientError(Exception):
    pass


class _SafeRedirectHandler(HTTPRedirectHandler):
    def __init__(self, config: SandboxConfig) -> None:
        super().__init__()
        self._config = config

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: ANN001
        # urllib may pass relative URLs here; normalize against the previous URL.
        absolute = urllib.parse.urljoin(req.full_url, str(newurl))
        parsed = urllib.parse.urlparse(absolute)
        if parsed.scheme not in ("http", "https"):
            raise HttpClientError("Only http/https are supported (redirect)")
        if not self._config.is_host_allowed(parsed.hostname or ""):
            raise HttpClientError(f"Host {parsed.hostname} is not in allowlist (redirect)")
        return super().redirect_request(req, fp, code, msg, headers, absolute)


def ensure_allowed(url: str, config: SandboxConfig) -> None:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise HttpClientError("Only http/https are supported")
    if not config.is_host_allowed(parsed.hostname or ""):
        raise HttpClientError(f"Host {parsed.hostname} is not in allowlist")


def http_get_text(url: str, config: SandboxConfig) -> str:
    """Blocking GET returning the decoded body; any non-2xx status is an error."""
    ensure_allowed(url, config)
    req = Request(url, headers={"User-Agent": "agentic-sandbox/1.0", "Accept": "text/html,*/*"})
    try:
        ctx = ssl.create_default_context()
        opener = build_opener(_SafeRedirectHandler(config), HTTPSHandler(context=ctx))
        with opener.open(req, timeout=config.http_timeout) as resp:
            body = resp.read(config.http_max_bytes + 1)
            if len(body) > config.http_max_bytes:
                raise HttpClientError(f"Response exceeds {config.http_max_bytes} bytes: {url}")
            charset = resp.headers.get_content_charset() or "utf-8"
            return body.decode(charset, errors="replace")
    except HTTPError as exc:
        raise HttpClientError(f"HTTP {exc.code} for {url}") from exc
    except (TimeoutError, URLError) as exc:
        raise HttpClientError(str(exc)) from exc
