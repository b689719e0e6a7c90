#!/usr/bin/env python3
"""
RealFocus - Main Entry Point

Background service for the RealFocus browser extension. Judges whether the
pages you open fit your current focus topic, runs the Pomodoro timer and
blocks distractions.

Speaks JSON lines: every stdin line is one command such as
    {"id": 1, "action": "init_focus", "keywords": "vercel deployment"}
and every response or outward signal is one JSON line on stdout.
Logs go to stderr.

Usage:
    python main.py                      # Use the default data directory
    python main.py --mock               # Canned judgments, no API calls
    python main.py --data-dir ./tmp     # Keep storage somewhere else
"""

import sys
import json
import asyncio
import logging
import argparse
from pathlib import Path
from typing import Any, Dict

import config
from core.engine import FocusEngine
from storage.kv_store import JsonFileStore

logger = logging.getLogger(__name__)


def configure_logging(level_name: str) -> None:
    """Log to stderr so stdout stays a clean protocol stream."""
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format=config.LOG_FORMAT,
        stream=sys.stderr,
    )
    # Suppress noisy third-party library logs (HTTP requests, etc.)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def write_message(message: Dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(message, ensure_ascii=False) + "\n")
    sys.stdout.flush()


def emit_signal(signal: str, **payload) -> None:
    write_message({"type": "signal", "signal": signal, **payload})


def attach_signal_writers(engine: FocusEngine) -> None:
    """Forward engine callbacks to stdout using the extension's message names."""
    engine.on_block = lambda tab_id, url, reason, score: emit_signal(
        "show_block_ui", tab_id=tab_id, url=url, reason=reason, score=score
    )
    engine.on_forced_block = lambda tab_id, url, reason, score: emit_signal(
        "block_page", tab_id=tab_id, url=url, reason=reason, score=score
    )
    engine.on_grace_started = lambda tab_id, url, duration, message: emit_signal(
        "timer_start", tab_id=tab_id, url=url, duration=duration, message=message
    )
    engine.on_clear_ui = lambda tab_id: emit_signal("remove_ui", tab_id=tab_id)
    engine.on_state_change = lambda snapshot: emit_signal("state_change", state=snapshot)


async def handle_line(engine: FocusEngine, line: str) -> None:
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as e:
        write_message({
            "type": "response",
            "id": None,
            "success": False,
            "error": f"Invalid JSON: {e}",
            "error_type": "invalid_json",
        })
        return

    request_id = payload.get("id") if isinstance(payload, dict) else None
    try:
        result = await engine.dispatch(payload)
    except Exception as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        result = {"success": False, "error": str(e), "error_type": "internal_error"}
    write_message({"type": "response", "id": request_id, **result})


async def serve(engine: FocusEngine) -> None:
    """Read commands until stdin closes."""
    await engine.start()
    pending = set()
    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            # Each command runs on its own so a slow classification never
            # holds up timer controls.
            task = asyncio.create_task(handle_line(engine, line))
            pending.add(task)
            task.add_done_callback(pending.discard)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
    finally:
        await engine.shutdown()


def main():
    """Main entry point: parse arguments and run the service loop."""
    parser = argparse.ArgumentParser(
        description="RealFocus - AI-Powered Focus Assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                   Run with the default data directory
  python main.py --mock            Run without calling the OpenAI API
        """
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help=f"Directory for the storage file (default: {config.USER_DATA_DIR})",
    )
    parser.add_argument(
        "--log-level",
        default=config.LOG_LEVEL,
        help="DEBUG, INFO, WARNING or ERROR",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use canned judgments instead of the OpenAI API",
    )

    args = parser.parse_args()
    configure_logging(args.log_level)

    storage_file = (args.data_dir / "storage.json") if args.data_dir else config.STORAGE_FILE
    store = JsonFileStore(storage_file, config.STORAGE_QUOTA_BYTES)
    engine = FocusEngine(store=store, mock=True if args.mock else None)
    attach_signal_writers(engine)

    if not engine.mock and not config.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set. Every judgment will use the fallback score.")

    try:
        asyncio.run(serve(engine))
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
