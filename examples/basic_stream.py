"""
basic_stream.py — Minimal simplycache example.

Streams one file twice: the first request reads it from disk, the second is
served from memory without reopening the file.

Usage:
    python examples/basic_stream.py path/to/file
"""

import sys

from simplycache import SimplyCache


async def main(path: str) -> None:
    cache = SimplyCache(max_files=4)

    async with cache.stream(path) as first:
        body = await first.read()
    async with cache.stream(path) as second:
        replay = await second.read()

    print(f"{path}: {len(body)} bytes, replay identical={body == replay}")
    print(cache.stats().model_dump_json(indent=2))
    await cache.aclose()


if __name__ == "__main__":
    import asyncio

    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else __file__))
