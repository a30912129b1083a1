"""
Command-line interface for agio.
"""

import argparse
import asyncio
import sys

import structlog
import uvicorn

from .config import Settings, get_settings

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="agio",
        description="agio - conversation orchestration for tool-using LLM agents",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    chat_parser = subparsers.add_parser("chat", help="Interactive chat in the terminal")
    chat_parser.add_argument("--resume", metavar="ID", help="Continue a stored conversation")

    conv_parser = subparsers.add_parser("conversations", help="Manage stored conversations")
    conv_subparsers = conv_parser.add_subparsers(dest="conv_command")

    list_parser = conv_subparsers.add_parser("list", help="List stored conversations")
    list_parser.add_argument("--limit", type=int, default=10)
    list_parser.add_argument("--offset", type=int, default=0)

    show_parser = conv_subparsers.add_parser("show", help="Print a conversation")
    show_parser.add_argument("id", help="Conversation id")

    delete_parser = conv_subparsers.add_parser("delete", help="Delete a conversation")
    delete_parser.add_argument("id", help="Conversation id")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()

    if args.command == "serve":
        run_server(args.host or settings.host, args.port or settings.port, args.reload)
    elif args.command == "chat":
        asyncio.run(chat(settings, args.resume))
    elif args.command == "conversations":
        if args.conv_command == "list":
            asyncio.run(list_conversations(settings, args.limit, args.offset))
        elif args.conv_command == "show":
            asyncio.run(show_conversation(settings, args.id))
        elif args.conv_command == "delete":
            asyncio.run(delete_conversation(settings, args.id))
        else:
            conv_parser.print_help()
    else:
        parser.print_help()


def run_server(host: str, port: int, reload: bool) -> None:
    """Run the FastAPI server."""
    logger.info("Starting agio server", host=host, port=port)

    uvicorn.run(
        "agio.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level="info",
    )


async def chat(settings: Settings, resume_id: str | None = None) -> None:
    """Interactive chat loop against the configured store."""
    from .api.app import build_manager
    from .errors import AgioError

    manager = await build_manager(settings)
    try:
        if resume_id:
            agent = await manager.get_agent(resume_id)
        else:
            agent = await manager.get_agent(await manager.create_agent())

        print(f"Conversation {agent.conversation_id} (Ctrl-D to quit)\n")
        while True:
            try:
                text = input("you> ").strip()
            except (EOFError, KeyboardInterrupt):
                print()
                break
            if not text:
                continue

            try:
                answer = await agent.run(text)
            except AgioError as e:
                print(f"error: {e}")
                continue
            print(f"assistant> {answer}\n")
    finally:
        await manager.store.close()


async def list_conversations(settings: Settings, limit: int, offset: int) -> None:
    """List stored conversations."""
    from .persistence import create_store

    store = await create_store(settings)
    try:
        conversations = await store.list_conversations(limit=limit, offset=offset)
    finally:
        await store.close()

    if not conversations:
        print("No stored conversations.")
        return

    print(f"\n{'ID':<38} {'Messages':<10} {'Tokens':<10} {'Updated':<20}")
    print("-" * 80)

    for meta in conversations:
        updated = meta.updated_at.strftime("%Y-%m-%d %H:%M:%S")
        print(f"{meta.id:<38} {meta.message_count:<10} {meta.token_count:<10} {updated:<20}")


async def show_conversation(settings: Settings, conversation_id: str) -> None:
    """Print a stored conversation."""
    from .errors import ConversationNotFound
    from .persistence import create_store

    store = await create_store(settings)
    try:
        conversation = await store.load_conversation(conversation_id)
    except ConversationNotFound as e:
        logger.error("Conversation not found", conversation_id=conversation_id)
        print(str(e))
        return
    finally:
        await store.close()

    print(f"\nConversation {conversation.id} ({conversation.model or 'unknown model'})\n")
    for message in conversation.messages:
        role = message.role.value
        if message.tool_calls:
            calls = ", ".join(f"{c.name}({c.arguments})" for c in message.tool_calls)
            print(f"[{role}] {message.content} -> {calls}")
        elif message.tool_call_id:
            print(f"[{role}:{message.name or message.tool_call_id}] {message.content}")
        else:
            print(f"[{role}] {message.content}")


async def delete_conversation(settings: Settings, conversation_id: str) -> None:
    """Delete a stored conversation."""
    from .persistence import create_store

    store = await create_store(settings)
    try:
        await store.delete_conversation(conversation_id)
    finally:
        await store.close()
    logger.info("Conversation deleted", conversation_id=conversation_id)


if __name__ == "__main__":
    main()
