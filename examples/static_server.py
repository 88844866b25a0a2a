"""
static_server.py — Serve a directory over HTTP from a gzip-compressing cache.

Hot files are pinned with `preload`; everything else is cached on demand and
evicted least-recently-used first. Responses stream while the cache fills, so
the first request for a large file does not wait for the whole read.

Usage:
    python examples/static_server.py ./public 8080
"""

import asyncio
import logging
import sys
from pathlib import Path

from simplycache import CacheError, SimplyCache, gzip_stage

logger = logging.getLogger("static_server")


async def main(root: Path, port: int) -> None:
    cache = SimplyCache(max_files=64, chunk_size=16 * 1024, transform_pipeline=[gzip_stage()])
    root = root.resolve()
    index = root / "index.html"
    if index.exists():
        await cache.preload(index)

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        request_line = (await reader.readline()).decode("latin-1").split()
        target = (root / request_line[1].lstrip("/")).resolve() if len(request_line) > 1 else index
        if target.is_dir():
            target = target / "index.html"
        if root not in target.parents or not target.is_file():
            writer.write(b"HTTP/1.1 404 Not Found\r\nContent-Length: 0\r\n\r\n")
        else:
            writer.write(
                b"HTTP/1.1 200 OK\r\nContent-Encoding: gzip\r\n"
                b"Transfer-Encoding: chunked\r\n\r\n"
            )
            try:
                async with cache.stream(target) as body:
                    async for chunk in body:
                        writer.write(b"%x\r\n%s\r\n" % (len(chunk), chunk))
                        await writer.drain()
            except CacheError:
                logger.exception("Failed to stream %s", target)
            writer.write(b"0\r\n\r\n")
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", port)
    logger.info("Serving %s on http://127.0.0.1:%d", root, port)
    async with cache, server:
        await server.serve_forever()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    directory = Path(sys.argv[1] if len(sys.argv) > 1 else ".")
    asyncio.run(main(directory, int(sys.argv[2]) if len(sys.argv) > 2 else 8080))
