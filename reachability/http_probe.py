# -*- codeing = utf-8 -*-
"""HTTP probing helper functions."""

import logging
from typing import Optional
from urllib.parse import urlsplit

import requests

LOGGER = logging.getLogger(__name__)

DEFAULT_PROTOCOL = "http"


def build_probe_url(host: str, port: Optional[int] = None) -> str:
    """Turn a configured host into the URL requested by the HTTP probe.

    A bare host name gets the ``http`` scheme; ``port`` only applies when the
    host does not already name one.
    """

    normalized = host.strip()
    has_scheme = "://" in normalized
    url = normalized if has_scheme else f"{DEFAULT_PROTOCOL}://{normalized}"
    if port is None:
        return url

    parts = urlsplit(url)
    if parts.port is not None or not parts.hostname:
        return url

    hostname = parts.hostname
    if ":" in hostname:
        hostname = f"[{hostname}]"
    netloc = f"{hostname}:{port}"
    if parts.username:
        credentials = parts.username
        if parts.password:
            credentials = f"{credentials}:{parts.password}"
        netloc = f"{credentials}@{netloc}"
    return parts._replace(netloc=netloc).geturl()


def probe_http_service(session: requests.Session, url: str,
                       timeout: float) -> bool:
    """Perform a GET probe; any completed response counts as reachable."""

    try:
        response = session.get(url, timeout=timeout)
    except requests.RequestException as exc:
        LOGGER.warning("reachability.http.error url=%s error=%s", url, exc)
        return False

    status_code = response.status_code
    response.close()
    if 200 <= status_code < 400:
        LOGGER.info("reachability.http.success url=%s status=%s", url,
                    status_code)
    else:
        LOGGER.info("reachability.http.error_status url=%s status=%s", url,
                    status_code)
    return True


__all__ = ["build_probe_url", "probe_http_service"]
