#!/usr/bin/env python3
"""
Prompt Queue CLI: queue prompts and drive delivery from a terminal.

Usage:
    prompt-queue add "Refactor the parser" --delay 2.5
    prompt-queue rate-limited "Continue the migration" --message "Resets at 2:30 PM"
    prompt-queue list [--pending]
    prompt-queue process                 # deliver everything that is due
    prompt-queue deliver 3f9a1c2e        # deliver one item now
    prompt-queue remove 3f9a1c2e
    prompt-queue purge
    prompt-queue parse "Try again in 4h 30m"
    prompt-queue run                     # keep the scheduler running
"""
import argparse
import asyncio
import sys
from typing import Optional

from dotenv import load_dotenv

from config.log_setup import configure_logging
from config.settings import load_settings
from core.engine import DeliveryEngine, RateLimitNotDetected
from utils.ratelimit import parse_rate_limit_message
from utils.timeutils import format_display_time


def _print_item(item) -> None:
    state = "done" if item.processed else "pending"
    preview = item.prompt_text.replace("\n", " ")[:72]
    print(f"  {item.id}  {format_display_time(item.not_before)}  {state:<7}  {preview}")


async def _run_forever(engine: DeliveryEngine) -> None:
    await engine.start()
    try:
        await asyncio.Event().wait()
    finally:
        await engine.stop()


async def run_command(args: argparse.Namespace, engine: DeliveryEngine) -> int:
    cmd = args.command

    if cmd == "add":
        try:
            item = await engine.enqueue(args.prompt, args.delay, args.origin)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2
        print(f"Queued {item.id} for {format_display_time(item.not_before)}")

    elif cmd == "rate-limited":
        try:
            item, info = await engine.enqueue_rate_limited(
                args.prompt, args.message or "", args.delay, args.origin,
            )
        except RateLimitNotDetected:
            print("Could not detect a reset time; pass --delay HOURS", file=sys.stderr)
            return 2
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2
        tag = "" if info.confidence.value == "high" else f" ({info.confidence.value} confidence)"
        print(f"Queued {item.id} for {format_display_time(item.not_before)}{tag}")

    elif cmd == "list":
        items = await (engine.list_pending() if args.pending else engine.list_items())
        if not items:
            print("Queue is empty")
        for item in items:
            _print_item(item)

    elif cmd == "process":
        delivered = await engine.process_now()
        print(f"Delivered {delivered} item(s)")

    elif cmd == "deliver":
        if not await engine.force_deliver(args.id):
            print(f"Could not deliver {args.id}", file=sys.stderr)
            return 1
        print(f"Delivered {args.id}")

    elif cmd == "remove":
        if not await engine.remove(args.id):
            print(f"No item {args.id}", file=sys.stderr)
            return 1
        print(f"Removed {args.id}")

    elif cmd == "purge":
        removed = await engine.purge_processed()
        print(f"Purged {removed} processed item(s)")

    elif cmd == "parse":
        info = parse_rate_limit_message(args.text)
        if info is None:
            print(f"No reset time detected; suggested delay {engine.suggest_delay(args.text)}h")
            return 1
        reset = format_display_time(info.reset_at) if info.reset_at else "-"
        print(f"delay={info.delay_hours}h reset={reset} confidence={info.confidence.value} "
              f"match={info.raw_match!r}")

    elif cmd == "run":
        await _run_forever(engine)

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prompt-queue", description="Deferred prompt delivery")
    parser.add_argument("--config", help="Path to settings.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add", help="Queue a prompt")
    p.add_argument("prompt")
    p.add_argument("--delay", type=float, default=None, help="Hours to wait (default from config)")
    p.add_argument("--origin", default="", help="Workspace path or target session")

    p = sub.add_parser("rate-limited", help="Queue a prompt behind a rate limit")
    p.add_argument("prompt")
    p.add_argument("--message", help="The rate-limit error text")
    p.add_argument("--delay", type=float, default=None, help="Manual delay in hours")
    p.add_argument("--origin", default="")

    p = sub.add_parser("list", help="Show queued prompts")
    p.add_argument("--pending", action="store_true")

    sub.add_parser("process", help="Deliver all due prompts now")

    p = sub.add_parser("deliver", help="Deliver one prompt now")
    p.add_argument("id")

    p = sub.add_parser("remove", help="Remove a prompt")
    p.add_argument("id")

    sub.add_parser("purge", help="Drop delivered prompts")

    p = sub.add_parser("parse", help="Parse a rate-limit message")
    p.add_argument("text")

    sub.add_parser("run", help="Run the scheduler until interrupted")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)
    configure_logging(settings.log_level)
    engine = DeliveryEngine.from_settings(settings)
    try:
        return asyncio.run(run_command(args, engine))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
