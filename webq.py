import argparse
import asyncio
import sys
from typing import Dict, List, Optional

from webq.webq_datatypes import PageData
from webq.webq_file import load_page
from webq.webq_http import fetch_page
from webq.webq_logging import configure_logging
from webq.webq_runtime import QueryRunner
from webq.webq_serialize import serialize
from webq.webq_validator import validate


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webq",
        description="Extract values from an HTML or JSON document with a query expression.",
    )
    parser.add_argument("query", nargs="?", help="query expression; starts a REPL when omitted")
    parser.add_argument("source", help="local file, file:// locator or http(s) URL")
    parser.add_argument("--url", help="page URL to use instead of the source location")
    parser.add_argument("--format", choices=("json", "yaml"), default="json", help="output format")
    parser.add_argument("--var", action="append", default=[], metavar="NAME=VALUE",
                        help="initial variable (repeatable)")
    parser.add_argument("--validate", action="store_true", help="print validation report before running")
    parser.add_argument("--log-level", default=None, help="logging level (default from WEBQ_LOG_LEVEL)")
    return parser


def parse_vars(pairs: List[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise SystemExit(f"Error: --var expects NAME=VALUE, got {pair!r}")
        out[name] = value
    return out


async def load_source(source: str, url: Optional[str] = None) -> PageData:
    if source.startswith(("http://", "https://")):
        page = await fetch_page(source)
        if url:
            page.url = url
        return page
    return load_page(source, url=url)


def print_value(value, fmt: str) -> None:
    if value is None:
        return
    if isinstance(value, str) and fmt == "json":
        print(value)
        return
    print(serialize(value, fmt=fmt).rstrip("\n"))


def run_query(runner: QueryRunner, query: str, page: PageData, fmt: str,
              variables: Dict[str, str], show_validation: bool = False) -> bool:
    """Run one query and print its value. Returns False on error."""
    if show_validation:
        print(str(validate(query)), file=sys.stderr)
    result = runner.handle_query(query, page, variables=variables)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return False
    print_value(result.value, fmt)
    return True


async def main(argv: Optional[List[str]] = None):
    """Run a query when provided, otherwise start the interactive REPL."""
    args = build_parser().parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level)
    variables = parse_vars(args.var)

    try:
        page = await load_source(args.source, args.url)
    except FileNotFoundError:
        print(f"Error: file not found: {args.source}", file=sys.stderr)
        raise SystemExit(1)
    except (RuntimeError, OSError) as e:
        print(f"Error: could not load {args.source}: {e}", file=sys.stderr)
        raise SystemExit(1)

    runner = QueryRunner()
    if args.query is not None:
        if not run_query(runner, args.query, page, args.format, variables, args.validate):
            raise SystemExit(1)
        return

    print("webq REPL v0.1")
    print(f"Page: {page.url}")
    print("Type 'exit' or press Ctrl+D to quit.")

    # REPL Loop
    while True:
        try:
            raw = await ainput(">> ")
            if raw == "":
                raise EOFError
            line = raw.strip()

            if not line:
                continue
            if line == "exit":
                break
            if line.startswith(":validate "):
                print(str(validate(line[len(":validate "):].strip())))
                continue

            run_query(runner, line, page, args.format, variables, args.validate)

        except EOFError:
            print("\nExiting.")
            break


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")
