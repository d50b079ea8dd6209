import argparse
import json
import logging
import sys
from typing import List, Optional

from config import load_settings
from detect import DetectionResult, detect_ec2
from environment import check_prefix, format_exports, to_env_vars

log = logging.getLogger("detect-ec2")

EPILOG = """\
Exit codes:
  0  Running on EC2
  1  Not running on EC2

Examples:
  %(prog)s
  %(prog)s --json
  %(prog)s --verbose --json
  %(prog)s --timeout 2000
  eval "$(%(prog)s --env --verbose --prefix AWS_)"
"""


def _timeout(value: str) -> int:
    try:
        timeout = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid timeout {value!r}, expected milliseconds")
    if timeout <= 0:
        raise argparse.ArgumentTypeError(f"timeout must be positive, got {timeout}")
    return timeout


def _prefix(value: str) -> str:
    try:
        return check_prefix(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    settings = load_settings()
    parser = argparse.ArgumentParser(
        prog="detect-ec2",
        description="Detect if running on AWS EC2",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    parser.add_argument("-j", "--json", action="store_true", help="output result as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="include instance metadata in output")
    parser.add_argument(
        "-t", "--timeout", type=_timeout, default=settings.timeout_ms,
        help=f"set timeout in ms (default: {settings.timeout_ms})"
    )
    parser.add_argument("-e", "--env", action="store_true", help="print shell export commands for the result")
    parser.add_argument(
        "-p", "--prefix", type=_prefix, default=settings.prefix,
        help=f"prefix for exported variable names (default: {settings.prefix})"
    )
    args = parser.parse_args(argv)
    args.log_level = settings.log_level
    return args


def render_text(result: DetectionResult, verbose: bool) -> str:
    if not result.is_ec2:
        return "Not EC2"
    lines = [f"EC2 (IMDS {result.imds_version})"]
    if verbose and result.metadata:
        lines.extend(f"  {key}: {value}" for key, value in result.metadata.items())
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    # stdout carries the result, so logs go to stderr.
    logging.basicConfig(level=args.log_level, stream=sys.stderr, format="%(name)s: %(levelname)s: %(message)s")

    try:
        result = detect_ec2(args.timeout, args.verbose)

        if args.env:
            exports = format_exports(to_env_vars(result, args.prefix))
            print(exports)
        elif args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            print(render_text(result, args.verbose))

        return 0 if result.is_ec2 else 1
    except Exception as e:
        log.debug("detection failed", exc_info=True)
        if args.json:
            print(json.dumps({"isEC2": False, "error": str(e)}))
        else:
            print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
