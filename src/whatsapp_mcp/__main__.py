"""Run the WhatsApp MCP server (stdio, or streamable HTTP with ``serve``)."""
import logging
import sys

from whatsapp_core.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
    # stdout carries the MCP protocol
    stream=sys.stderr,
)
logger = logging.getLogger("whatsapp_mcp")


def main() -> int:
    from whatsapp_mcp.server import mcp

    if len(sys.argv) > 1 and sys.argv[1] == "serve":
        import asyncio

        import uvicorn

        port = int(sys.argv[2]) if len(sys.argv) > 2 else settings.MCP_PORT
        starlette_app = mcp.streamable_http_app()
        config = uvicorn.Config(starlette_app, host="0.0.0.0", port=port, log_level="info")
        logger.info("Serving MCP over HTTP on port %d", port)
        asyncio.run(uvicorn.Server(config).serve())
        return 0
    mcp.run(transport="stdio")
    return 0


if __name__ == "__main__":
    sys.exit(main())
