"""Command-line entry point for the realtime conversation client."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Any

from config import ConfigController
from core.logging import enable_file_logging, log_info, log_warning, logger, set_level
from realtime import RealtimeClient
from realtime.tools import register_builtin_tools


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Raw command-line arguments.

    Returns:
        Parsed arguments namespace.
    """

    parser = argparse.ArgumentParser(
        description="Chat with a realtime model over text, prompts separated by |."
    )
    parser.add_argument("--prompts", type=str, help="Prompts separated by |")
    parser.add_argument(
        "--diagnostics",
        action="store_true",
        help="Run diagnostics probes and exit.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for each assistant reply (overrides config).",
    )
    return parser.parse_args(argv)


def build_client(realtime_cfg: dict[str, Any], api_key: str | None) -> RealtimeClient:
    """Create a client from the ``realtime`` config section."""

    client = RealtimeClient(
        url=realtime_cfg.get("url"),
        api_key=api_key,
        model=realtime_cfg.get("model"),
        debug=realtime_cfg.get("debug", False),
    )
    session = realtime_cfg.get("session") or {}
    if session:
        client.update_session(**session)
    register_builtin_tools(client)
    return client


async def wait_for_assistant_reply(
    client: RealtimeClient, timeout: float | None
) -> dict[str, Any] | None:
    while True:
        item = await client.wait_for_next_completed_item(timeout)
        if item is None:
            return None
        if item.get("type") == "message" and item.get("role") == "assistant":
            return item


async def run_conversation(
    client: RealtimeClient,
    prompts: list[str] | None,
    *,
    session_timeout: float,
    response_timeout: float,
) -> int:
    if not await client.connect():
        log_warning("Unable to connect to the realtime server.")
        return 1
    try:
        if not await client.wait_for_session_created(session_timeout):
            log_warning(f"No session.created within {session_timeout:.0f}s.")
            return 1

        interactive = prompts is None
        pending = list(prompts or [])
        while True:
            if interactive:
                line = await asyncio.to_thread(sys.stdin.readline)
                if not line:
                    break
                prompt = line.strip()
                if not prompt:
                    continue
            elif pending:
                prompt = pending.pop(0)
            else:
                break

            log_info(f"🧑 {prompt}", style="bold cyan")
            client.send_user_message_content([{"type": "input_text", "text": prompt}])
            reply = await wait_for_assistant_reply(client, response_timeout)
            if reply is None:
                log_warning(f"No assistant reply within {response_timeout:.0f}s.")
                continue
            formatted = reply["formatted"]
            log_info(f"🤖 {formatted['transcript'] or formatted['text']}", style="bold green")
    finally:
        await client.disconnect()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Process exit code.
    """

    if argv is None:
        argv = sys.argv[1:]

    args = parse_args(argv)
    if args.diagnostics:
        from config.diagnostics import probe as config_probe
        from diagnostics.models import any_failed
        from diagnostics.runner import format_results, run_diagnostics
        from realtime.diagnostics import probe as realtime_probe

        realtime_url = ConfigController.get_instance().get_realtime_config()["url"]

        def configured_realtime_probe():
            return realtime_probe(url=realtime_url)

        results = run_diagnostics([config_probe, configured_realtime_probe])
        print(format_results(results))
        return 1 if any_failed(results) else 0

    config_controller = ConfigController.get_instance()
    config = config_controller.get_config()
    set_level(config["logging_level"])
    if config["file_logging_enabled"]:
        log_file_path = Path(config["log_file"])
        enable_file_logging(log_file_path)
        logger.info("Writing logs to %s", log_file_path)

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        log_warning("OPENAI_API_KEY is not set.")

    realtime_cfg = config_controller.get_realtime_config()
    prompts = args.prompts.split("|") if args.prompts else None
    response_timeout = args.timeout or realtime_cfg["response_timeout_s"]

    try:
        client = build_client(realtime_cfg, api_key)
        return asyncio.run(
            run_conversation(
                client,
                prompts,
                session_timeout=realtime_cfg["session_created_timeout_s"],
                response_timeout=response_timeout,
            )
        )
    except KeyboardInterrupt:
        logger.info("Program terminated by user")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
