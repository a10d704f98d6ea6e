"""Command line probe for the MentorLink realtime channel.

Connects as one user, optionally opens a chat and sends a message, then logs
every realtime event received for a fixed duration.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import sys
import time
from collections import Counter
from typing import Any

from .api import BackendClient
from .chat import ChatSession
from .config import Settings, get_settings
from .monitoring.registry import registry
from .notifications import NotificationCenter
from .realtime import ConnectionBroker, EventStream, TransportUnavailableError
from .realtime.events import Event, NewMessage, WebRTCSignal
from .session import SessionContext

logger = logging.getLogger(__name__)


def _describe(event: Event) -> str:
    if isinstance(event, NewMessage):
        return f"from={event.message.sender_id} content={event.message.content!r}"
    if isinstance(event, WebRTCSignal):
        return f"signal={event.signal_type}"
    user_id = getattr(event, "user_id", None)
    return f"user={user_id}" if user_id else ""


async def _log_events(stream: EventStream, counts: Counter[str]) -> None:
    async for event in stream:
        counts[event.type] += 1
        logger.info("event %s %s", event.type, _describe(event))


async def run_probe(args: argparse.Namespace) -> dict[str, Any]:
    """Entry point used by the CLI wrapper."""

    settings = Settings(backend_url=args.backend_url) if args.backend_url else get_settings()
    session = SessionContext(user_id=args.user_id, token=args.token, settings=settings)
    notifications = NotificationCenter()
    counts: Counter[str] = Counter()
    summary: dict[str, Any] = {"user_id": session.user_id, "url": session.websocket_url}

    started = time.perf_counter()
    async with BackendClient(session) as client:
        broker = ConnectionBroker(session)
        try:
            await broker.acquire()
        except TransportUnavailableError as exc:
            logger.error("could not connect to %s: %s", session.websocket_url, exc)
            summary.update(connected=False, error=str(exc))
            return summary

        stream = broker.subscribe()
        pump = asyncio.create_task(_log_events(stream, counts), name="probe-events")
        chat: ChatSession | None = None
        try:
            if args.peer:
                chat = ChatSession(client, broker, notifications=notifications)
                summary["conversation_id"] = await chat.open(args.peer)
                if args.message and chat.is_open:
                    sent = await chat.send_text(args.message)
                    summary["message_id"] = sent.message_id if sent else None
            logger.info("listening for %.1fs", args.duration)
            await asyncio.sleep(args.duration)
        finally:
            if chat is not None:
                await chat.close()
            stream.close()
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
            await broker.release()

    summary.update(
        connected=True,
        events=dict(counts),
        events_total=sum(counts.values()),
        notifications=notifications.messages(),
        wall_clock_seconds=time.perf_counter() - started,
    )
    return summary


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="mentorlink-probe", description=__doc__)
    parser.add_argument("--backend-url", default=None, help="Backend origin, e.g. http://localhost:8000")
    parser.add_argument("--user-id", required=True, help="Identity used for the realtime connection")
    parser.add_argument("--token", default=None, help="Bearer token used for authentication")
    parser.add_argument("--peer", default=None, help="Open a chat with this user id")
    parser.add_argument("--message", default=None, help="Text message to send once the chat is open")
    parser.add_argument(
        "--duration",
        type=float,
        default=30.0,
        help="How long to keep listening for events (seconds)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit the summary as JSON for machine processing",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Print the client metrics in Prometheus text format after the summary",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log verbosity level (defaults to MENTORLINK_LOG_LEVEL, then INFO)",
    )
    return parser.parse_args(argv)


def resolve_log_level(args: argparse.Namespace) -> int:
    name = args.log_level or get_settings().log_level
    return getattr(logging, name.upper(), logging.INFO)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=resolve_log_level(args),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        summary = asyncio.run(run_probe(args))
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        logger.warning("interrupted by user")
        return 130

    if args.json:
        print(json.dumps(summary, indent=2, sort_keys=True, default=str))
    else:
        print("\n=== Realtime Probe Summary ===")
        for key, value in summary.items():
            print(f"{key}: {value}")
    if args.metrics:
        print(registry.render(), end="")
    return 0 if summary.get("connected") else 1


if __name__ == "__main__":
    raise SystemExit(main())
