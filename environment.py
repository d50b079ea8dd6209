import os
import re
import shlex
from typing import Dict, MutableMapping, Optional

from detect import DEFAULT_TIMEOUT_MS, DetectionResult, detect_ec2

DEFAULT_PREFIX = "EC2_"

_PREFIX_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)?$")
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def check_prefix(prefix: str) -> str:
    if not _PREFIX_RE.match(prefix):
        raise ValueError(f"invalid environment variable prefix {prefix!r}")
    return prefix


def check_name(name: str) -> str:
    if not _NAME_RE.match(name):
        raise ValueError(f"invalid environment variable name {name!r}")
    return name


def _default_name(key: str, prefix: str) -> str:
    names = {"isEC2": "IS_EC2", "imdsVersion": "IMDS_VERSION"}
    return prefix + names.get(key, key.upper().replace("-", "_"))


def to_env_vars(
    result: DetectionResult,
    prefix: str = DEFAULT_PREFIX,
    overrides: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """Map a detection result onto variable names.

    ``overrides`` maps a result key (``isEC2``, ``imdsVersion`` or a metadata
    field such as ``instance-id``) to the full variable name to use instead
    of the prefixed default.
    """
    check_prefix(prefix)
    overrides = overrides or {}
    for name in overrides.values():
        check_name(name)

    values = {"isEC2": "true" if result.is_ec2 else "false"}
    if result.imds_version is not None:
        values["imdsVersion"] = result.imds_version
    values.update(result.metadata or {})

    return {overrides.get(key) or _default_name(key, prefix): value for key, value in values.items()}


def set_env_vars(
    result: DetectionResult,
    prefix: str = DEFAULT_PREFIX,
    overrides: Optional[Dict[str, str]] = None,
    environ: Optional[MutableMapping[str, str]] = None,
) -> Dict[str, str]:
    env_vars = to_env_vars(result, prefix, overrides)
    target = os.environ if environ is None else environ
    target.update(env_vars)
    return env_vars


def format_exports(env_vars: Dict[str, str]) -> str:
    return "\n".join(f"export {name}={shlex.quote(value)}" for name, value in env_vars.items())


def detect_and_set_env(
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    verbose: bool = False,
    prefix: str = DEFAULT_PREFIX,
    overrides: Optional[Dict[str, str]] = None,
    environ: Optional[MutableMapping[str, str]] = None,
) -> DetectionResult:
    check_prefix(prefix)
    for name in (overrides or {}).values():
        check_name(name)
    result = detect_ec2(timeout_ms, verbose)
    set_env_vars(result, prefix, overrides, environ)
    return result
