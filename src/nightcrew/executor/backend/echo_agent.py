"""Local demo agent for CLI backend integration tests."""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Emit agent-style JSON output, optionally touching the working tree."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt", required=True)
    parser.add_argument("--model", default="sonnet")
    parser.add_argument("--write-file", default=None)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--cost-usd", type=float, default=0.01)
    parser.add_argument("--sleep-seconds", type=float, default=0.0)
    args = parser.parse_args(argv)

    if args.sleep_seconds > 0:
        time.sleep(args.sleep_seconds)

    if args.write_file:
        target = Path.cwd() / args.write_file
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(f"{args.prompt.strip()}\n", encoding="utf-8")

    payload = {
        "type": "result",
        "is_error": args.exit_code != 0,
        "result": args.prompt.strip(),
        "model": os.getenv("NIGHTCREW_MODEL", args.model),
        "total_cost_usd": args.cost_usd,
        "usage": {
            "input_tokens": len(args.prompt.split()) * 10,
            "output_tokens": 42,
        },
    }
    sys.stdout.write(json.dumps(payload))
    sys.stdout.flush()
    if args.exit_code != 0:
        sys.stderr.write("echo agent reported failure\n")
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
