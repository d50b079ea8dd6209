"""Shared pytest fixtures: an in-memory stand-in for the metadata service."""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple, Union

import pytest

import config
import detect
import metadata
from metadata import RequestFailed

Reply = Union[Tuple[int, str], RequestFailed]

TOKEN_HEADER = "X-aws-ec2-metadata-token"


class FakeImds:
    """Routes (method, path) to a canned reply; unknown routes fail like a timeout.

    Setting ``token`` makes every GET without that token header answer 401,
    the way an instance that enforces IMDSv2 does.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Reply] = {}
        self.token: Optional[str] = None
        self.calls: List[Tuple[str, str, Dict[str, str], int]] = []

    def reply(self, method: str, path: str, status: int, body: str = "") -> None:
        self.routes[(method, path)] = (status, body)

    def fail(self, method: str, path: str) -> None:
        self.routes[(method, path)] = RequestFailed(f"{method} {path} timed out")

    def __call__(
        self,
        path: str,
        timeout_ms: int,
        headers: Optional[Dict[str, str]] = None,
        method: str = "GET",
    ) -> Tuple[int, str]:
        self.calls.append((method, path, dict(headers or {}), timeout_ms))
        reply = self.routes.get((method, path), RequestFailed(f"{method} {path} timed out"))
        if isinstance(reply, RequestFailed):
            raise reply
        if self.token is not None and method == "GET" and (headers or {}).get(TOKEN_HEADER) != self.token:
            return 401, ""
        return reply

    @property
    def requested(self) -> List[Tuple[str, str]]:
        return [(method, path) for method, path, _, _ in self.calls]


@pytest.fixture
def imds(monkeypatch: pytest.MonkeyPatch) -> FakeImds:
    fake = FakeImds()
    monkeypatch.setattr(metadata, "imds_request", fake)
    monkeypatch.setattr(detect, "imds_request", fake)
    return fake


@pytest.fixture
def ec2_v2(imds: FakeImds) -> FakeImds:
    imds.token = "AABBCC"
    imds.reply("PUT", "/latest/api/token", 200, "AABBCC")
    imds.reply("GET", "/latest/meta-data/", 200, "ami-id\ninstance-id\n")
    return imds


@pytest.fixture(autouse=True)
def clean_settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "load_dotenv", lambda: False)
    for name in ("DETECT_EC2_TIMEOUT", "DETECT_EC2_PREFIX", "DETECT_EC2_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
