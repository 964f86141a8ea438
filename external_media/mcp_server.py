"""MCP server exposing remote image validation as a tool."""

from __future__ import annotations

import logging
from typing import Any, Dict

from mcp.server.fastmcp import FastMCP

from .batch import process_batch
from .config import AdmissionPolicy, ProbePolicy
from .utils import split_urls

logger = logging.getLogger("external_media.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="external-media")


@mcp.tool()
async def validate_images(urls: str) -> Dict[str, Any]:
    """Check newline-separated image URLs and report dimensions or rejection reasons."""

    candidates = split_urls(urls)
    if not candidates:
        logger.error("validate_images called without any URLs")
        raise ValueError("No valid URLs provided.")
    result = await process_batch(candidates, AdmissionPolicy(), ProbePolicy())
    return result.to_dict()


@mcp.tool()
async def validate_image(url: str) -> Dict[str, Any]:
    """Check a single image URL and return its metadata or rejection reason."""

    result = await process_batch([url.strip()], AdmissionPolicy(), ProbePolicy())
    data = result.to_dict()
    return (data["successful"] + data["failed"])[0]


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
