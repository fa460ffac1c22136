"""axon_agent.main

Entry point.

Run:
    axon-agent serve [--host 0.0.0.0] [--port 3001]
    axon-agent chat "search for today's weather in Paris"

`serve` starts the HTTP service under uvicorn; `chat` runs a single turn in
the terminal and prints the answer, the plan and any generated files.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from .agent import SessionManager, TurnStatus, session_factory_from_config
from .config import AppConfig, load_config
from .logging_utils import configure_logging


def _serve(cfg: AppConfig, *, host: str, port: int) -> int:
    import uvicorn

    from .server import create_app

    uvicorn.run(create_app(cfg), host=host, port=port, log_config=None)
    return 0


def _chat(cfg: AppConfig, text: str) -> int:
    if not cfg.model_configured:
        print("[SYSTEM] No OPENAI_API_KEY set. Set it, or AXON_FAKE_LLM=1 for the offline demo model.")

    session = SessionManager(session_factory_from_config(cfg)).create()
    result = session.run_turn(text)

    msg = result.message
    if result.status is not TurnStatus.COMPLETED:
        print(f"[{result.status.value}] {result.error or 'turn did not complete'}")
    if msg is not None:
        for step in msg.steps or []:
            print(f"  [{step.status}] {step.id}. {step.title}")
        if msg.content:
            print()
            print(msg.content)
        for f in msg.generated_files or []:
            print(f"  file: {f.name} ({f.type}{', ' + f.size if f.size else ''})")
        if msg.grounding_metadata is not None:
            for c in msg.grounding_metadata.grounding_chunks:
                print(f"  source: {c.title} <{c.uri}>")
    return 0 if result.status is TurnStatus.COMPLETED else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    cfg = load_config()

    ap = argparse.ArgumentParser(prog="axon-agent", description="Autonomous web/sandbox agent service.")
    ap.add_argument("--log-level", default="INFO")
    sub = ap.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("serve", help="Run the HTTP service.")
    sp.add_argument("--host", default=cfg.host)
    sp.add_argument("--port", type=int, default=cfg.port)

    cp = sub.add_parser("chat", help="Run one turn in the terminal.")
    cp.add_argument("text")

    args = ap.parse_args(argv)
    configure_logging(log_dir=cfg.log_dir, level=getattr(logging, str(args.log_level).upper(), logging.INFO))

    if args.command == "serve":
        return _serve(cfg, host=args.host, port=args.port)
    return _chat(cfg, args.text)


if __name__ == "__main__":
    sys.exit(main())
