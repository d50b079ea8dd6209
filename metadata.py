import logging
import time
from typing import Dict, Optional, Tuple

import requests
from urllib3.util import Timeout

IMDS_HOST = "169.254.169.254"
IMDS_BASE = f"http://{IMDS_HOST}:80"
TOKEN_PATH = "/latest/api/token"
META_DATA_PATH = "/latest/meta-data/"
TOKEN_TTL = "21600"  # seconds

TOKEN_TTL_HEADER = "X-aws-ec2-metadata-token-ttl-seconds"
TOKEN_HEADER = "X-aws-ec2-metadata-token"

# Responses from the metadata service are tiny, this only bounds memory.
MAX_BODY_BYTES = 64 * 1024

log = logging.getLogger("detect-ec2")


class RequestFailed(Exception):
    """A metadata probe did not complete: network error, timeout or oversize body."""


def _read_body(resp: requests.Response, deadline: float, method: str, path: str, timeout_ms: int) -> bytes:
    # requests applies its read timeout per socket operation. Each read here
    # is a single recv whose timeout is cut to what is left of the deadline.
    sock = getattr(getattr(resp.raw, "connection", None), "sock", None)
    chunks = iter(resp.iter_content(chunk_size=1))
    body = bytearray()
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise RequestFailed(f"{method} {path} timed out after {timeout_ms}ms")
        if sock is not None:
            sock.settimeout(remaining)
        chunk = next(chunks, None)
        if chunk is None:
            return bytes(body)
        body.extend(chunk)
        if len(body) > MAX_BODY_BYTES:
            raise RequestFailed(f"{method} {path} response exceeds {MAX_BODY_BYTES} bytes")


def imds_request(
    path: str,
    timeout_ms: int,
    headers: Optional[Dict[str, str]] = None,
    method: str = "GET",
) -> Tuple[int, str]:
    if method not in ("GET", "PUT"):
        raise ValueError(f"unsupported method {method!r}")
    if timeout_ms <= 0:
        raise ValueError(f"timeout must be positive, got {timeout_ms}")

    deadline = time.monotonic() + timeout_ms / 1000
    try:
        # A fresh session per call: no pooling, and trust_env off so proxy
        # variables never redirect the request away from the metadata host.
        with requests.Session() as session:
            session.trust_env = False
            with session.request(
                method,
                f"{IMDS_BASE}{path}",
                headers=dict(headers or {}),
                timeout=Timeout(total=timeout_ms / 1000),
                stream=True,
            ) as resp:
                body = _read_body(resp, deadline, method, path, timeout_ms)
                return resp.status_code, body.decode("utf-8", errors="replace")
    except requests.RequestException as e:
        raise RequestFailed(f"{method} {path} failed: {e}") from e


def get_imds_token(timeout_ms: int) -> Optional[str]:
    headers = {TOKEN_TTL_HEADER: TOKEN_TTL}
    try:
        status, body = imds_request(TOKEN_PATH, timeout_ms, headers, "PUT")
    except RequestFailed as e:
        log.debug("IMDSv2 token request failed: %s", e)
        return None
    if status != 200 or not body:
        log.debug("IMDSv2 token request returned status %s", status)
        return None
    return body


def token_headers(token: Optional[str]) -> Dict[str, str]:
    return {TOKEN_HEADER: token} if token else {}
