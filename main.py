"""
summarycast: command-line entry point.

Wires together:  config → env snapshot → pipeline → stream controller → CLI display

    python main.py summarize article.txt          summarize a file
    cat notes.md | python main.py summarize -     summarize stdin
    python main.py watch <run-id>                 follow a daemon run over SSE
    python main.py models --task website          show the fallback order
    python main.py daemon                         start the HTTP daemon
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from dataclasses import replace
from pathlib import Path

from summarycast.auth_store import load_token
from summarycast.cli.display import console, drain_notices, print_attempt_table
from summarycast.config import Config, build_env_snapshot, load_config
from summarycast.controller import SETUP_REQUIRED, StreamController
from summarycast.pipeline import SummaryRequest, plan_attempts, run_summary
from summarycast.registry import TASK_KINDS
from summarycast.transport import LocalTransport, SseTransport


def _load(path: str | None) -> Config:
    try:
        return load_config(path)
    except FileNotFoundError as exc:
        console.print(f"[red]Error:[/] {exc}")
        sys.exit(1)
    except ValueError as exc:
        console.print(f"[red]Config error:[/] {exc}")
        sys.exit(1)


def _read_input(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    path = Path(source)
    if not path.is_file():
        console.print(f"[red]Error:[/] no such file: {source}")
        sys.exit(1)
    return path.read_text(encoding="utf-8", errors="replace")


# --------------------------------------------------------------------------- #
# Commands                                                                     #
# --------------------------------------------------------------------------- #

async def _summarize(args: argparse.Namespace, stop_event: asyncio.Event) -> int:
    config = _load(args.config)
    if args.no_stream:
        config = replace(config, run=replace(config.run, stream=False))
    snapshot = build_env_snapshot(config=config)
    request = SummaryRequest(
        content=_read_input(args.input),
        task=args.task,
        model=args.model,
        instructions=args.instructions,
        source=None if args.input == "-" else Path(args.input).name,
    )

    transport = LocalTransport(
        lambda _run_id: run_summary(request, config=config, snapshot=snapshot, stop_event=stop_event)
    )
    controller = StreamController(transport, mode="summarize")
    controller.start("local")

    drain = asyncio.create_task(drain_notices(controller.notices))
    stop = asyncio.create_task(stop_event.wait())
    done, _ = await asyncio.wait({drain, stop}, return_when=asyncio.FIRST_COMPLETED)
    if stop in done:
        controller.abort()
        drain.cancel()
        return 130
    stop.cancel()
    await controller.wait()
    return 0 if drain.result() else 1


async def _watch(args: argparse.Namespace, stop_event: asyncio.Event) -> int:
    config = _load(args.config)
    base_url = args.url or f"http://{config.daemon.host}:{config.daemon.port}"
    transport = SseTransport(base_url, load_token(Path(config.daemon.token_path)))
    if not transport.ready:
        console.print(f"[yellow]{SETUP_REQUIRED}[/]: start the daemon once to create a token.")
        return 1

    controller = StreamController(transport, mode=args.mode)
    controller.start(args.run_id)

    drain = asyncio.create_task(drain_notices(controller.notices))
    stop = asyncio.create_task(stop_event.wait())
    done, _ = await asyncio.wait({drain, stop}, return_when=asyncio.FIRST_COMPLETED)
    if stop in done:
        controller.abort()
        drain.cancel()
        return 130
    stop.cancel()
    return 0 if drain.result() else 1


def _models(args: argparse.Namespace) -> int:
    config = _load(args.config)
    snapshot = build_env_snapshot(config=config)
    try:
        plan = plan_attempts(args.model, args.task, config, snapshot)
    except ValueError as exc:
        console.print(f"[red]Error:[/] {exc}")
        return 1
    print_attempt_table(args.task, plan.attempts, snapshot)
    return 0


def _daemon(args: argparse.Namespace) -> int:
    import uvicorn

    config = _load(args.config)
    uvicorn.run(
        "summarycast.web.app:app",
        host=args.host or config.daemon.host,
        port=args.port or config.daemon.port,
    )
    return 0


# --------------------------------------------------------------------------- #
# Entry point                                                                  #
# --------------------------------------------------------------------------- #

def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="summarycast", description="Streamed LLM summaries with provider fallback.")
    parser.add_argument("--config", help="path to config.yaml (default: ./config.yaml if present)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("summarize", help="summarize a file, or stdin with '-'")
    p.add_argument("input")
    p.add_argument("--model", help='"auto", a preset name, or a provider-prefixed id')
    p.add_argument("--task", default="text", choices=TASK_KINDS)
    p.add_argument("--instructions", help="extra instructions placed before the content")
    p.add_argument("--no-stream", action="store_true", help="wait for the whole summary")

    p = sub.add_parser("watch", help="follow a daemon run")
    p.add_argument("run_id")
    p.add_argument("--mode", default="summarize", choices=("summarize", "chat"))
    p.add_argument("--url", help="daemon base URL")

    p = sub.add_parser("models", help="show the fallback order for a task")
    p.add_argument("--model")
    p.add_argument("--task", default="text", choices=TASK_KINDS)

    p = sub.add_parser("daemon", help="run the HTTP daemon")
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    return parser


def main() -> None:
    args = _parser().parse_args()

    if args.command == "models":
        sys.exit(_models(args))
    if args.command == "daemon":
        sys.exit(_daemon(args))

    async def _run() -> int:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        original_sigint = signal.getsignal(signal.SIGINT)

        def _on_sigint(sig: int, frame: object) -> None:
            # Schedule the event set on the event loop thread (safe on Windows)
            loop.call_soon_threadsafe(stop_event.set)
            # Restore the original handler so a second Ctrl+C force-quits
            signal.signal(signal.SIGINT, original_sigint)

        signal.signal(signal.SIGINT, _on_sigint)
        if args.command == "summarize":
            return await _summarize(args, stop_event)
        return await _watch(args, stop_event)

    sys.exit(asyncio.run(_run()))


if __name__ == "__main__":
    main()
