#!/usr/bin/env python3
"""Check that every `sls ...` snippet in the docs parses, and that each command is documented."""

from __future__ import annotations

import argparse
import contextlib
import io
import re
import shlex
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from sls_sdk.cli.main import _build_parser  # noqa: E402


def _extract_sls_commands(text: str) -> list[str]:
    pattern = re.compile(r"```bash\s*(.*?)```", re.DOTALL | re.IGNORECASE)
    commands: list[str] = []
    for block in pattern.findall(text):
        for line in block.splitlines():
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            if stripped.startswith("sls "):
                commands.append(stripped)
    return commands


def _top_level_commands(parser: argparse.ArgumentParser) -> set[str]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return set(action.choices)
    return set()


def _parse_snippet(parser: argparse.ArgumentParser, argv: list[str]) -> argparse.Namespace | None:
    try:
        with contextlib.redirect_stdout(io.StringIO()):
            with contextlib.redirect_stderr(io.StringIO()):
                return parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (0, None):
            raise ValueError("unparseable") from exc
        return None


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--paths",
        nargs="+",
        default=["README.md"],
        help="Markdown file globs to validate",
    )
    parser.add_argument(
        "--allow-undocumented",
        action="store_true",
        help="Do not require an example for every top-level command",
    )
    args = parser.parse_args()

    markdown_files: list[Path] = []
    for raw in args.paths:
        if any(char in raw for char in "*?[]"):
            markdown_files.extend(sorted(ROOT.glob(raw)))
        else:
            markdown_files.append(ROOT / raw)

    cli_parser = _build_parser()
    errors: list[str] = []
    documented: set[str] = set()
    checked = 0

    for path in markdown_files:
        if not path.exists():
            errors.append(f"{path}: not found")
            continue
        for command in _extract_sls_commands(path.read_text(encoding="utf-8")):
            checked += 1
            argv = shlex.split(command)[1:]
            if any(token.startswith("<") and token.endswith(">") for token in argv):
                continue
            try:
                parsed = _parse_snippet(cli_parser, argv)
            except ValueError:
                errors.append(f"{path.name}: invalid command snippet: {command}")
                continue
            if parsed is not None:
                documented.add(parsed.command)

    if not args.allow_undocumented:
        for name in sorted(_top_level_commands(cli_parser) - documented):
            errors.append(f"no documented example for `sls {name}`")

    if errors:
        print("doc command validation failed:")
        for item in errors:
            print(f"- {item}")
        return 1

    print(f"doc command validation passed ({checked} command snippets)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
