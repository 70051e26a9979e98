"""Command that sends a control event to the running daemon and prints the reply."""

from __future__ import annotations

import argparse
import json
import sys
from typing import Optional, Sequence

from dnsagent.control import Event, dial
from dnsagent.settings import DEFAULT_CONTROL


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run `<command> [-control ADDR]`; return the exit status."""
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv:
        print("usage: dnsagent <command> [-control ADDR]", file=sys.stderr)
        return 2
    cmd, rest = argv[0], argv[1:]
    parser = argparse.ArgumentParser(prog=cmd)
    parser.add_argument(
        "-control", "--control", default=DEFAULT_CONTROL,
        help="Address to the control socket",
    )
    parser.add_argument("extra", nargs="*", help=argparse.SUPPRESS)
    opts = parser.parse_args(rest)
    try:
        client = dial(opts.control)
    except OSError as err:
        print(f"{cmd}: {err}", file=sys.stderr)
        return 1
    try:
        data = client.send(Event(name=cmd))
    except OSError as err:
        print(f"{cmd}: {err}", file=sys.stderr)
        return 1
    finally:
        client.close()
    if isinstance(data, str):
        print(data)
    else:
        print(json.dumps(data, indent=4, sort_keys=True, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())