"""Local deterministic agent for CLI backend integration tests."""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Read the prompt from stdin and optionally touch files in the working directory."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--write", action="append", default=[], help="Relative file to write.")
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--stderr", default="")
    parser.add_argument("--raw", action="store_true", help="Emit plain text instead of JSON.")
    parser.add_argument("--silent", action="store_true", help="Emit nothing on stdout.")
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--flood-bytes", type=int, default=0)
    args = parser.parse_args(argv)

    prompt = sys.stdin.read()
    for relative in args.write:
        target = Path.cwd() / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(f"written by echo agent\n{len(prompt)}\n", "utf-8")

    if args.flood_bytes > 0:
        chunk = "x" * 65_536
        remaining = args.flood_bytes
        while remaining > 0:
            sys.stdout.write(chunk[: min(remaining, len(chunk))])
            remaining -= len(chunk)
        sys.stdout.flush()
    elif args.raw:
        print(f"plain output: {len(prompt)} chars")
    elif not args.silent:
        print(
            json.dumps(
                {
                    "type": "result",
                    "result": "done",
                    "prompt_chars": len(prompt),
                    "has_context": "# CONTEXT" in prompt,
                    "files_written": list(args.write),
                },
            ),
        )

    if args.stderr:
        print(args.stderr, file=sys.stderr)

    if args.sleep > 0:
        sys.stdout.flush()
        time.sleep(args.sleep)
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
