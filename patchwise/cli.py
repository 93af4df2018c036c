"""
CLI entry point — argument parsing and main execution flow.
"""

import argparse
import asyncio
import json
import os
import signal
import sys

from .cli_display import ProgressPrinter, log, setup_logger, token_tracker
from .config import Config
from .intent import RouteContext
from .llm import create_client
from .orchestrator import Orchestrator, RunOutcome
from .workspace import LocalWorkspace


def _print_outcome(outcome: RunOutcome, show_patch: bool) -> None:
    print(f"\n  [{outcome.status}] {outcome.action}")
    if outcome.message:
        print(f"\n{outcome.message}\n")
    if outcome.summary is not None:
        s = outcome.summary
        print(f"  {s.title}  (confidence: {s.confidence})")
        for bullet in s.what_changed:
            print(f"   - {bullet}")
        for f in s.files:
            print(f"   * {f.path}: {f.change}")
        for risk in s.risks:
            print(f"   ! {risk}")
        print()
    if show_patch and outcome.result is not None and outcome.patch:
        shown = outcome.result.capped_patch if outcome.result.partial else outcome.patch
        print(shown)
        if outcome.result.partial:
            print("\n  (diff truncated for display)")


async def _run(orchestrator: Orchestrator, message: str, context: RouteContext) -> RunOutcome:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
    except NotImplementedError:
        log.debug("SIGINT handler not supported on this platform")
    return await orchestrator.handle_message(message, context)


def main():
    parser = argparse.ArgumentParser(description="patchwise — grounded patches from plain requests")
    parser.add_argument("message", help="What to do, e.g. 'add a docstring to utils.py'")
    parser.add_argument("--provider", choices=["ollama", "openai"], default=None,
                        help="Backend provider (default: from config)")
    parser.add_argument("--model", default=None,
                        help="The model name to use (default: from config)")
    parser.add_argument("--config", default=None,
                        help="Path to .patchwise.yaml config file")
    parser.add_argument("--root", default=".",
                        help="Project root (default: current directory)")
    parser.add_argument("--file", default=None,
                        help="File currently open in the editor (for 'this file')")
    parser.add_argument("--apply", action="store_true",
                        help="Write the patch to disk when one is produced")
    parser.add_argument("--no-stream", action="store_true",
                        help="Disable streaming responses")
    parser.add_argument("--no-timeout", action="store_true",
                        help="Disable phase deadlines")
    parser.add_argument("--json", action="store_true",
                        help="Print the outcome as JSON")
    parser.add_argument("--quiet", action="store_true",
                        help="Do not print progress events")
    args = parser.parse_args()

    # ── 0. Load config ──
    cfg = Config.load(args.config)
    if args.no_timeout:
        cfg.NO_TIMEOUT = True
    setup_logger(cfg.LOG_DIR)

    # ── 1. Init backend ──
    try:
        backend = create_client(cfg, provider=args.provider, model=args.model,
                                stream=False if args.no_stream else None)
    except ValueError as exc:
        print(f"\n  [ERROR] {exc}\n")
        sys.exit(2)

    root = os.path.abspath(args.root)
    orchestrator = Orchestrator(backend, LocalWorkspace(root), cfg=cfg)
    if not args.quiet and not args.json:
        orchestrator.channel.subscribe(ProgressPrinter())

    # ── 2. Run ──
    context = RouteContext(current_open_file=args.file, workspace_root=root)
    outcome = asyncio.run(_run(orchestrator, args.message, context))
    log.info(f"Run {outcome.run_id} finished: {outcome.status} ({outcome.action})")

    # ── 3. Apply ──
    written = []
    if args.apply and outcome.status == "ready" and outcome.result is not None:
        applied = orchestrator.apply(outcome)
        if applied.success:
            written = applied.applied
        else:
            for path, err in applied.failed:
                print(f"  [ERROR] {path}: {err}")

    if args.json:
        print(json.dumps({
            "run_id": outcome.run_id,
            "status": outcome.status,
            "action": outcome.action,
            "message": outcome.message,
            "patch": outcome.patch,
            "tier": outcome.result.tier if outcome.result else "none",
            "summary": outcome.summary.model_dump(by_alias=True) if outcome.summary else None,
            "files_written": written,
        }, indent=2))
    else:
        _print_outcome(outcome, show_patch=True)
        if written:
            print(f"  Wrote {len(written)} file(s): {', '.join(written)}")
        print(f"  Tokens: {token_tracker.total_tokens} ({token_tracker.call_count} calls)")

    if outcome.status in ("failed", "cancelled"):
        sys.exit(1)


if __name__ == "__main__":
    main()
