import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from metadata import (
    META_DATA_PATH,
    RequestFailed,
    get_imds_token,
    imds_request,
    token_headers,
)

DEFAULT_TIMEOUT_MS = 1000

METADATA_FIELDS = (
    "instance-id",
    "instance-type",
    "ami-id",
    "local-ipv4",
    "public-ipv4",
)

log = logging.getLogger("detect-ec2")


@dataclass(frozen=True)
class DetectionResult:
    is_ec2: bool
    imds_version: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape of the result; absent values are left out rather than null."""
        data: Dict[str, Any] = {"isEC2": self.is_ec2}
        if self.imds_version is not None:
            data["imdsVersion"] = self.imds_version
        if self.metadata is not None:
            data["metadata"] = dict(self.metadata)
        return data


def _timeout_or_default(timeout_ms: Optional[int]) -> int:
    if not timeout_ms:
        return DEFAULT_TIMEOUT_MS
    if timeout_ms < 0:
        raise ValueError(f"timeout must be positive, got {timeout_ms}")
    return timeout_ms


def try_imds_v2(timeout_ms: int) -> bool:
    token = get_imds_token(timeout_ms)
    if token is None:
        return False
    try:
        status, _ = imds_request(META_DATA_PATH, timeout_ms, token_headers(token))
    except RequestFailed as e:
        log.debug("IMDSv2 probe failed: %s", e)
        return False
    return status == 200


def try_imds_v1(timeout_ms: int) -> bool:
    try:
        status, _ = imds_request(META_DATA_PATH, timeout_ms)
    except RequestFailed as e:
        log.debug("IMDSv1 probe failed: %s", e)
        return False
    return status == 200


def get_metadata(timeout_ms: Optional[int] = DEFAULT_TIMEOUT_MS) -> Optional[Dict[str, str]]:
    """Fetch the common metadata fields, skipping any that fail.

    A fresh token is requested even when the caller already negotiated
    IMDSv2; without one the fields are read unauthenticated (IMDSv1).
    Returns None when no field could be read.
    """
    timeout_ms = _timeout_or_default(timeout_ms)
    headers = token_headers(get_imds_token(timeout_ms))

    metadata = {}
    for field in METADATA_FIELDS:
        try:
            status, body = imds_request(f"{META_DATA_PATH}{field}", timeout_ms, headers)
        except RequestFailed as e:
            log.debug("metadata field %s unavailable: %s", field, e)
            continue
        if status == 200:
            metadata[field] = body
        else:
            log.debug("metadata field %s returned status %s", field, status)

    return metadata or None


def _detected(version: str, timeout_ms: int, verbose: bool) -> DetectionResult:
    log.info("running on EC2 (IMDS %s)", version)
    metadata = get_metadata(timeout_ms) if verbose else None
    return DetectionResult(is_ec2=True, imds_version=version, metadata=metadata)


def detect_ec2(timeout_ms: Optional[int] = DEFAULT_TIMEOUT_MS, verbose: bool = False) -> DetectionResult:
    """Probe the instance metadata service, preferring IMDSv2 over IMDSv1.

    Network failures never propagate: an unreachable service is reported as
    ``DetectionResult(is_ec2=False)``.
    """
    timeout_ms = _timeout_or_default(timeout_ms)
    if try_imds_v2(timeout_ms):
        return _detected("v2", timeout_ms, verbose)

    if try_imds_v1(timeout_ms):
        return _detected("v1", timeout_ms, verbose)

    log.info("not running on EC2")
    return DetectionResult(is_ec2=False)
