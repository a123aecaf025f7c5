from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import time
from pathlib import Path

from dotenv import load_dotenv

from mantis.agent.cognition.dialogue.engine import DialogueEngine
from mantis.agent.cognition.dialogue.results import DialogueResult
from mantis.agent.cognition.nlu.catalog import get_default_catalog, load_catalog
from mantis.agent.cognition.nlu.intent_recognizer import IntentRecognizer
from mantis.agent.nervous_system.kv_store import InMemoryKeyValueStore
from mantis.agent.session.registry import build_engine, open_default_store
from mantis.config import settings
from mantis.infrastructure.api_server import ApiServer

_EXIT_WORDS = {"exit", "quit", "esci"}


def main() -> None:
    parser = argparse.ArgumentParser(prog="mantis")
    parser.add_argument("--log-level", default=os.getenv("MANTIS_LOG_LEVEL", "INFO"))
    parser.add_argument("--catalog", default=None, help="Path to an NLU catalog JSON file")
    sub = parser.add_subparsers(dest="command", required=True)

    recognize_parser = sub.add_parser("recognize", help="Recognize intent and entities in one utterance")
    recognize_parser.add_argument("text", help="Utterance text")
    recognize_parser.add_argument(
        "--history",
        nargs="*",
        default=[],
        help="Recently recognized intents, oldest first",
    )
    recognize_parser.add_argument(
        "--chain",
        action="store_true",
        help="Split chained commands and recognize each part",
    )

    chat_parser = sub.add_parser("chat", help="Interactive dialogue session")
    chat_parser.add_argument("--session-id", default="cli", help="Dialogue session id")
    chat_parser.add_argument(
        "--no-persist",
        action="store_true",
        help="Keep insights in memory instead of the sqlite store",
    )

    serve_parser = sub.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=os.getenv("MANTIS_API_HOST", "127.0.0.1"))
    serve_parser.add_argument("--port", type=int, default=int(os.getenv("MANTIS_API_PORT", "8000")))

    args = parser.parse_args()
    _configure_logging(args.log_level)
    _load_env()

    if args.command == "recognize":
        _command_recognize(args)
        return
    if args.command == "chat":
        _command_chat(args)
        return
    if args.command == "serve":
        _command_serve(args)
        return


def _command_recognize(args: argparse.Namespace) -> None:
    recognizer = _build_recognizer(getattr(args, "catalog", None))
    history = [item for item in (args.history or []) if item]
    if args.chain:
        commands = recognizer.recognize_chain(args.text, history)
        print(json.dumps([command.to_dict() for command in commands], ensure_ascii=False, indent=2))
        return
    command = recognizer.recognize(args.text, history)
    print(json.dumps(command.to_dict(), ensure_ascii=False, indent=2))


def _command_chat(args: argparse.Namespace) -> None:
    store = InMemoryKeyValueStore() if args.no_persist else open_default_store()
    engine = build_engine(args.session_id, store=store, catalog_path=getattr(args, "catalog", None))
    print("mantis chat (type 'exit' to quit)")
    while True:
        try:
            text = input("> ")
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if text.strip().lower() in _EXIT_WORDS:
            break
        if not text.strip():
            continue
        result = asyncio.run(engine.handle_turn(text))
        _print_result(result)
        _report_outcome(engine, result)
    engine.flush()


def _command_serve(args: argparse.Namespace) -> None:
    server = ApiServer(host=args.host, port=args.port, log_level=str(args.log_level).lower())
    server.start()
    logging.info("mantis API listening host=%s port=%s (ctrl+c to stop)", args.host, args.port)
    try:
        while server.running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        server.stop()


def _print_result(result: DialogueResult) -> None:
    if result.message:
        print(result.message)
    if result.needs_execution and result.action is not None:
        print(json.dumps({"execute": result.action.to_dict()}, ensure_ascii=False))


def _report_outcome(engine: DialogueEngine, result: DialogueResult) -> None:
    if not result.needs_execution or result.action is None:
        return
    follow = engine.update_context(
        result.action.intent,
        result.action.entities,
        is_nested=False,
        success=True,
        confidence=result.action.confidence,
    )
    if follow is not None and follow.message:
        print(follow.message)


def _build_recognizer(catalog_path: str | None) -> IntentRecognizer:
    path = catalog_path or settings.get_nlu_catalog_path()
    catalog = load_catalog(path) if path else get_default_catalog()
    return IntentRecognizer(catalog, analysis_char_limit=settings.get_analysis_char_limit())


def _load_env() -> None:
    env_path = Path(__file__).resolve().parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)


def _configure_logging(level_name: str) -> None:
    logging.basicConfig(level=getattr(logging, level_name.upper(), logging.INFO))


if __name__ == "__main__":
    main()
