"""CLI entry point for ae-chat."""

from __future__ import annotations

import argparse
import asyncio
import base64
import mimetypes
import sys
from pathlib import Path
from typing import Awaitable, Callable

from pydantic import ValidationError

from ae_chat.app import ChatApp
from ae_chat.config import AppConfig, default_config, load_config
from ae_chat.core.errors import ChatError
from ae_chat.log import setup_logging
from ae_chat.render.markdown import render_markdown
from ae_chat.storage.settings_store import dump_settings, validate_api_key


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ae-chat",
        description="After Effects AI chat core: conversations, providers, rendering",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    send_parser = subparsers.add_parser("send", help="Send one message and print the reply")
    send_parser.add_argument("text", help="Message text")
    send_parser.add_argument("--image", help="Image file to attach")
    send_parser.add_argument("--conversation", help="Conversation id to continue")
    send_parser.add_argument("--html", action="store_true", help="Print rendered HTML")
    _add_common(send_parser)

    chat_parser = subparsers.add_parser("chat", help="Interactive chat (/new, /list, /quit)")
    _add_common(chat_parser)

    list_parser = subparsers.add_parser("list", help="List conversations")
    _add_common(list_parser)

    show_parser = subparsers.add_parser("show", help="Show one conversation")
    show_parser.add_argument("conversation_id")
    show_parser.add_argument("--html", action="store_true", help="Render messages as HTML")
    _add_common(show_parser)

    export_parser = subparsers.add_parser("export", help="Export all conversations as JSON")
    export_parser.add_argument("path")
    _add_common(export_parser)

    import_parser = subparsers.add_parser("import", help="Merge conversations from an exported JSON file")
    import_parser.add_argument("path")
    _add_common(import_parser)

    search_parser = subparsers.add_parser("search", help="Search messages across conversations")
    search_parser.add_argument("query")
    search_parser.add_argument("--limit", type=int, default=20, help="Maximum hits to print")
    _add_common(search_parser)

    clear_parser = subparsers.add_parser("clear", help="Erase all conversations")
    clear_parser.add_argument("--yes", action="store_true", help="Confirm the erase")
    _add_common(clear_parser)

    settings_parser = subparsers.add_parser("settings", help="Show or update provider settings")
    settings_parser.add_argument("--provider")
    settings_parser.add_argument("--model")
    settings_parser.add_argument("--api-key")
    settings_parser.add_argument("--temperature", type=float)
    settings_parser.add_argument("--max-tokens", type=int)
    _add_common(settings_parser)

    test_parser = subparsers.add_parser("test-key", help="Probe the configured provider")
    _add_common(test_parser)

    providers_parser = subparsers.add_parser("providers", help="List supported providers")
    _add_common(providers_parser)

    stats_parser = subparsers.add_parser("stats", help="Storage statistics")
    _add_common(stats_parser)

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_common(check_parser)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "config-check":
        return _check_config(args.config, args.env)

    config = _load(args.config, args.env)
    if config is None:
        return 1
    setup_logging(config.log_level, config.log_format)

    handlers: dict[str, Callable[[ChatApp, argparse.Namespace], Awaitable[int]]] = {
        "send": _send,
        "chat": _chat,
        "list": _list,
        "show": _show,
        "export": _export,
        "import": _import,
        "search": _search,
        "clear": _clear,
        "settings": _settings,
        "test-key": _test_key,
        "providers": _providers,
        "stats": _stats,
    }
    return asyncio.run(_with_app(config, handlers[args.command], args))


def _load(config_path: str, env_path: str) -> AppConfig | None:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError:
        return default_config()
    except (ValidationError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return None


def _check_config(config_path: str, env_path: str) -> int:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Storage: {config.storage.backend}", end="")
    if config.storage.backend == "sqlite":
        print(f" ({config.storage.db_path})")
    elif config.storage.backend == "file":
        print(f" ({config.storage.file_dir})")
    else:
        print()
    limit = config.storage.max_messages or "unbounded"
    print(f"  History per conversation: {limit}")
    print(f"  HTTP timeout: {config.http.timeout}s (probe {config.http.probe_timeout}s)")
    print(f"  Queue pacing: {config.queue.pacing_ms}ms")
    for name, provider in config.providers.items():
        print(f"    - {name}: model={provider.default_model or '(default)'} url={provider.base_url or '(default)'}")
    return 0


async def _with_app(
    config: AppConfig,
    handler: Callable[[ChatApp, argparse.Namespace], Awaitable[int]],
    args: argparse.Namespace,
) -> int:
    async with ChatApp(config) as app:
        return await handler(app, args)


def _image_data_url(path: str) -> str:
    file = Path(path)
    mime = mimetypes.guess_type(file.name)[0] or "application/octet-stream"
    return f"data:{mime};base64,{base64.b64encode(file.read_bytes()).decode()}"


async def _send(app: ChatApp, args: argparse.Namespace) -> int:
    try:
        image = _image_data_url(args.image) if args.image else None
    except OSError as e:
        print(f"Error: cannot read image {args.image}: {e}", file=sys.stderr)
        return 1
    try:
        reply = await app.session.send(args.text, image_data=image, conversation_id=args.conversation)
    except ChatError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(reply.html if args.html else reply.message.content)
    return 0 if reply.ok else 2


async def _chat(app: ChatApp, args: argparse.Namespace) -> int:
    print("ae-chat interactive. /new starts a conversation, /list shows them, /quit exits.")
    loop = asyncio.get_running_loop()
    while True:
        try:
            line = await loop.run_in_executor(None, input, "> ")
        except EOFError:
            break
        command = line.strip().lower()
        if command == "/quit":
            break
        if command == "/new":
            conv_id = await app.session.new_chat()
            print(f"Started {conv_id}")
            continue
        if command == "/list":
            await _list(app, args)
            continue
        try:
            reply = await app.session.send(line)
        except ChatError as e:
            print(f"! {e}")
            continue
        print(reply.message.content)
    return 0


async def _list(app: ChatApp, args: argparse.Namespace) -> int:
    conversations = app.store.get_conversation_list()
    if not conversations:
        print("No conversations.")
        return 0
    for conv in conversations:
        print(f"{conv.id}  {conv.updated_at}  ({conv.message_count} messages)  {conv.title}")
    return 0


async def _show(app: ChatApp, args: argparse.Namespace) -> int:
    conv = app.store.get_conversation(args.conversation_id)
    if conv is None:
        print(f"Conversation {args.conversation_id} not found", file=sys.stderr)
        return 1
    if not args.html:
        print(app.store.export_markdown(conv.id))
        return 0
    for msg in conv.messages:
        print(f'<div class="message {msg.role.value}">{render_markdown(msg.content)}</div>')
    return 0


async def _export(app: ChatApp, args: argparse.Namespace) -> int:
    if not app.store.export_to_file(args.path):
        print(f"Export failed: {args.path}", file=sys.stderr)
        return 1
    print(f"Exported to {args.path}")
    return 0


async def _import(app: ChatApp, args: argparse.Namespace) -> int:
    try:
        count = await app.store.import_data(Path(args.path))
    except (OSError, UnicodeDecodeError, ChatError) as e:
        print(f"Import failed: {e}", file=sys.stderr)
        return 1
    if not app.store.last_write_ok:
        print("Import merged but could not be saved; see log for details", file=sys.stderr)
        return 1
    print(f"Imported {count} conversations from {args.path}")
    return 0


async def _search(app: ChatApp, args: argparse.Namespace) -> int:
    hits = app.store.search_messages(args.query)
    if not hits:
        print("No matches.")
        return 0
    for hit in hits[: args.limit]:
        snippet = " ".join(hit.message.content.split())
        if len(snippet) > 80:
            snippet = snippet[:77] + "..."
        print(
            f"{hit.conversation_id}  {hit.message.timestamp}  "
            f"[{hit.message.role.value}]  {hit.conversation_title}: {snippet}"
        )
    if len(hits) > args.limit:
        print(f"... {len(hits) - args.limit} more")
    return 0


async def _clear(app: ChatApp, args: argparse.Namespace) -> int:
    if not args.yes:
        print("Refusing to erase chat history without --yes", file=sys.stderr)
        return 1
    if not await app.store.clear_all():
        print("Clear failed; see log for details", file=sys.stderr)
        return 1
    print("Chat history cleared.")
    return 0


async def _settings(app: ChatApp, args: argparse.Namespace) -> int:
    changes = {
        "provider": args.provider,
        "model": args.model,
        "api_key": args.api_key,
        "temperature": args.temperature,
        "max_tokens": args.max_tokens,
    }
    if any(v is not None for v in changes.values()):
        try:
            settings = await app.settings.update(**changes)
        except ValidationError as e:
            print(f"Invalid settings: {e}", file=sys.stderr)
            return 1
        if args.provider and not app.dispatcher.is_supported(settings.provider):
            print(f"Warning: unsupported provider {settings.provider}", file=sys.stderr)
        if args.api_key and not validate_api_key(settings.api_key, settings.provider):
            print(f"Warning: key does not look like a {settings.provider} key", file=sys.stderr)
    else:
        settings = await app.settings.load()
    print(dump_settings(settings))
    return 0


async def _test_key(app: ChatApp, args: argparse.Namespace) -> int:
    settings = await app.settings.load()
    result = await app.dispatcher.test_connection(settings.provider, settings.api_key, settings.model)
    if result["success"]:
        print(f"{settings.provider}: {result['message']}")
        return 0
    print(f"{settings.provider}: {result['error']}", file=sys.stderr)
    return 1


async def _providers(app: ChatApp, args: argparse.Namespace) -> int:
    for name in app.dispatcher.providers():
        print(f"{name:12} {app.dispatcher.default_model(name)}")
    return 0


async def _stats(app: ChatApp, args: argparse.Namespace) -> int:
    for key, value in (await app.store.stats()).items():
        print(f"{key}: {value}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
