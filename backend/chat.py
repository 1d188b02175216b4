#!/usr/bin/env python3
"""Interactive terminal chat against a running relay server.

Usage:
    python chat.py                          # streams from http://localhost:8000
    python chat.py http://relay.local:8000  # a specific server
    python chat.py --no-stream              # batch replies (one JSON response)

The server URL can also come from CHAT_API_URL. Start the server first:
    uvicorn app.main:app
"""

import asyncio
import os
import sys

import httpx

from app.client import ChatSession

DEFAULT_URL = "http://localhost:8000"

# --- ANSI Colors ---
DIVIDER = "\033[90m" + "─" * 50 + "\033[0m"
ASSISTANT_COLOR = "\033[96m"
RED = "\033[91m"
RESET = "\033[0m"
DIM = "\033[90m"
BOLD = "\033[1m"

QUIT_WORDS = ("quit", "exit", "q")


def parse_args(argv: list[str]) -> tuple[str, bool]:
    """Return (server URL, streaming?) from the command line."""
    stream = "--no-stream" not in argv
    positional = [a for a in argv if not a.startswith("--")]
    url = positional[0] if positional else os.environ.get("CHAT_API_URL", DEFAULT_URL)
    return url.rstrip("/"), stream


class TerminalRenderer:
    """Prints fragments as they arrive, then whatever the final message adds."""

    def __init__(self):
        self.streamed = ""

    def start(self):
        self.streamed = ""
        print(f"\n  {DIM}(thinking...){RESET}", end="", flush=True)

    def on_delta(self, fragment: str):
        if not self.streamed:
            # Clear "thinking" line
            print("\r" + " " * 30 + "\r", end="")
            print(f"  {ASSISTANT_COLOR}Assistant{RESET}: ", end="")
        print(fragment, end="", flush=True)
        self.streamed += fragment

    def finish(self, content: str):
        if self.streamed and content.startswith(self.streamed):
            rest = content[len(self.streamed):]
        else:
            # Nothing streamed, or the turn failed after the partial reply
            prefix = "\n" if self.streamed else "\r" + " " * 30 + "\r"
            print(prefix, end="")
            print(f"  {ASSISTANT_COLOR}Assistant{RESET}: ", end="")
            rest = content
        if rest.lstrip().startswith("Error:"):
            print(f"{RED}{rest}{RESET}", end="")
        else:
            print(rest, end="")
        print("\n")


async def run_chat(url: str, stream: bool):
    renderer = TerminalRenderer()

    print()
    print(f"{BOLD}" + "=" * 50 + f"{RESET}")
    print(f"{BOLD}  Chat{RESET}")
    print(f"  {DIM}{url} ({'streaming' if stream else 'batch'}){RESET}")
    print(f"{BOLD}" + "=" * 50 + f"{RESET}")

    async with httpx.AsyncClient(base_url=url, timeout=None) as client:
        session = ChatSession(client, stream=stream, on_delta=renderer.on_delta)
        print(f"  {DIM}{session.messages[0].content}{RESET}")
        print(f"  {DIM}[type 'quit' to leave]{RESET}")
        print(DIVIDER)

        while True:
            try:
                user_input = input(f"  {BOLD}You{RESET}: ").strip()
            except (EOFError, KeyboardInterrupt):
                print(f"\n\n  {DIM}Conversation ended.{RESET}")
                break

            if not user_input:
                continue
            if user_input.lower() in QUIT_WORDS:
                print(f"\n  {DIM}Bye.{RESET}\n")
                break

            renderer.start()
            reply = await session.submit(user_input)
            if reply is not None:
                renderer.finish(reply.content)


def main():
    url, stream = parse_args(sys.argv[1:])
    asyncio.run(run_chat(url, stream))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print(f"\n\n{DIM}Chat closed.{RESET}")
