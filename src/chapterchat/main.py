"""Main entry point for the application."""

import argparse
import asyncio
import signal
from typing import Optional

from .chapter_range import parse_chapter_range
from .config import Config, configure_structlog
from .llm_client import OpenAIChatSession, check_availability
from .prompts import CHAPTERS_REMOVED_TEMPLATE, MODEL_UNAVAILABLE, NOTHING_FITS
from .session import ChatSession, SessionEvent, SessionEventKind
from .status import ModelAvailability
from .streaming import StreamEventKind
from .transcript import format_ts
from .youtube_client import YoutubeClient


class StreamPrinter:
    """Prints streamed responses to the terminal as flushes arrive."""

    def __init__(self):
        self._printed = ""

    def __call__(self, event: SessionEvent) -> None:
        if event.kind is SessionEventKind.FAILED:
            print(f"\n{event.error}")
            return
        if event.kind is not SessionEventKind.STREAM or event.stream is None:
            return

        stream = event.stream
        if stream.kind is StreamEventKind.FAILED:
            print(f"\nError: {stream.error}\n")
            self._printed = ""
            return

        if stream.text.startswith(self._printed):
            print(stream.text[len(self._printed):], end="", flush=True)
        else:
            print(f"\n{stream.text}", end="", flush=True)
        self._printed = stream.text

        if stream.kind is StreamEventKind.CANCELLED:
            print(" [stopped]\n")
            self._printed = ""
        elif stream.kind is StreamEventKind.COMPLETED:
            print("\n")
            self._printed = ""


def print_chapters(chat: ChatSession) -> None:
    chapters = chat.context.chapters
    if not chapters:
        print("This video has no chapters; the whole transcript is in context.")
        return
    for i, chapter in enumerate(chapters):
        mark = "x" if i in chat.selected_chapters else " "
        print(f"  [{mark}] {i + 1:>2}. {format_ts(chapter.start_seconds)} {chapter.title}")
    print(f"Selected: {chat.range_input or '(none)'}")


def print_tokens(chat: ChatSession) -> None:
    snapshot = chat.token_snapshot()
    if snapshot is None:
        print("No active session.")
        return
    print(
        f"Tokens: {snapshot.total_tokens:,}/{snapshot.quota:,} ({snapshot.percentage_used:.1f}%) "
        f"- system {snapshot.system_tokens:,}, conversation {snapshot.conversation_tokens:,}"
    )


async def change_selection(chat: ChatSession, action, verbose: bool = False) -> None:
    result = await action
    if result is None:
        return
    if result.exhausted:
        print(NOTHING_FITS)
    elif result.removed_indices:
        removed = ", ".join(str(i + 1) for i in result.removed_indices)
        print(CHAPTERS_REMOVED_TEMPLATE.format(chapters=removed))
    if verbose:
        state = "measured" if result.verified else "estimated"
        print(f"  ✓ Selection uses {result.token_count:,} tokens ({state})")
    print("Reloading transcript into the session...")
    await chat.reset()
    print_chapters(chat)


def read_query() -> str:
    """Prompt for the next line; Ctrl-C here raises KeyboardInterrupt."""
    previous = signal.signal(signal.SIGINT, signal.default_int_handler)
    try:
        return input("You: ")
    finally:
        signal.signal(signal.SIGINT, previous)


async def stream_turn(chat: ChatSession, query: str) -> None:
    if not chat.send_turn(query):
        print("Cannot send right now.")
        return

    print("\nAssistant: ", end="", flush=True)
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, chat.cancel_turn)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        await chat.wait_for_turn()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def chat_video(url: str, chapters: Optional[str] = None, verbose: bool = False) -> None:
    """Start interactive chat about a video."""
    config = Config.from_env()
    configure_structlog("INFO" if verbose else config.log_level)

    if check_availability(config.openai_api_key) is not ModelAvailability.AVAILABLE:
        print(MODEL_UNAVAILABLE)
        return

    if verbose:
        print("  Step 1: Fetching transcript and chapters from YouTube...")
    client = YoutubeClient()
    context = await asyncio.to_thread(client.get_video_context, url)
    if context.error or not context.segments:
        print("Could not fetch transcript for your video. Please check the video id and try again.")
        return
    if verbose:
        print(f"  ✓ {len(context.segments)} segments, {len(context.chapters)} chapters")

    async def session_factory() -> OpenAIChatSession:
        return OpenAIChatSession(
            api_key=config.openai_api_key,
            model=config.chat_model,
            input_quota=config.context_quota,
        )

    chat = ChatSession(
        context,
        session_factory,
        margin_factor=config.context_margin,
        throttle_ms=config.stream_throttle_ms,
    )
    chat.subscribe(StreamPrinter())

    if verbose:
        print("  Step 2: Initializing chat session...")
    selected = None
    if chapters and context.chapters:
        selected = parse_chapter_range(chapters, len(context.chapters))
    if not await chat.start(selected):
        return
    if verbose:
        print_tokens(chat)

    print(f"Chatting about video: {context.title}")
    print("Type your questions (or '/exit' to quit, '/help' for help)\n")

    try:
        while True:
            query = read_query().strip()

            if not query:
                continue

            command, _, argument = query.partition(" ")
            command = command.lower()
            if command in ["/exit", "/quit"]:
                print_tokens(chat)
                print("Goodbye!")
                break
            elif command == "/help":
                print("Commands:")
                print("  /chapters - List chapters and current selection")
                print("  /range 1-3,5 - Select chapters by range")
                print("  /all, /none - Select all or no chapters")
                print("  /reset - Start a fresh conversation")
                print("  /tokens - Show context window usage")
                print("  /exit or /quit - Exit chat")
                print("  Ctrl-C while the assistant is answering stops the answer")
                continue
            elif command == "/chapters":
                print_chapters(chat)
                continue
            elif command == "/range":
                await change_selection(chat, chat.apply_range(argument), verbose)
                continue
            elif command == "/all":
                await change_selection(chat, chat.select_all(), verbose)
                continue
            elif command == "/none":
                await change_selection(chat, chat.deselect_all(), verbose)
                continue
            elif command == "/reset":
                await chat.reset()
                print("Conversation reset.")
                continue
            elif command == "/tokens":
                print_tokens(chat)
                continue

            await stream_turn(chat, query)
            if verbose:
                print_tokens(chat)

    except (KeyboardInterrupt, EOFError):
        print_tokens(chat)
        print("\n\nGoodbye!")
    finally:
        await chat.close()


def main():
    """Main entry point with subcommands."""
    parser = argparse.ArgumentParser(
        description="chapterchat - Chat about long YouTube videos, chapter by chapter",
        prog="chapterchat"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Chat command
    chat_parser = subparsers.add_parser("chat", help="Chat about a YouTube video")
    chat_parser.add_argument("url", help="YouTube video URL")
    chat_parser.add_argument("-c", "--chapters", help="Chapters to load, e.g. '1-3,5'")
    chat_parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")

    args = parser.parse_args()

    if args.command == "chat":
        try:
            asyncio.run(chat_video(args.url, chapters=args.chapters, verbose=args.verbose))
        except KeyboardInterrupt:
            print("\nGoodbye!")
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
