"""Minimal demonstration of streaming translation and chat."""

import asyncio
import sys

from translator_core.api.service import get_default_runtime
from translator_core.api.sessions import ChatSession


async def main() -> None:
    runtime = get_default_runtime()
    client = runtime.client()
    text = "안녕하세요, 만나서 반갑습니다."

    def show(chunk: str, _accumulated: str) -> None:
        sys.stdout.write(chunk)
        sys.stdout.flush()

    print("Source:", text)
    print("Translation: ", end="")
    await client.translate_with_stream(text, on_stream_update=show, is_panel=True)
    print()

    chat = ChatSession(client, conversation_id="demo")
    reply = await chat.send("How do I say 'nice to meet you' in Japanese?")
    print("Assistant:", reply.content)

    await runtime.aclose()


if __name__ == "__main__":
    asyncio.run(main())
