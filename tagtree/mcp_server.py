"""
FastMCP Server for Tag Tree

Lets an MCP client grow a tag tree from a library track, inspect it, grow
single tag branches, prune it, and save an HTML/SVG snapshot.

To connect to Claude Desktop (stdio), add to claude_desktop_config.json:
{
  "mcpServers": {
    "tagtree": {
      "command": "uv",
      "args": ["run", "--project", "/path/to/tagtree", "python", "-m", "tagtree.mcp_server"],
      "env": {"TAGTREE_LIBRARY_PATH": "/path/to/track_catalog.jsonl", "TAGTREE_TIME_SCALE": "0"}
    }
  }
}

To run over HTTP (SSE):
  python -m tagtree.mcp_server --transport sse [--host 127.0.0.1] [--port 8000]
"""

import json
import os
import signal
import sys
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

from fastmcp import FastMCP
from loguru import logger
from pydantic import BeforeValidator

from .config import TreeConfig
from .errors import TreeError
from .library_index import INDEX_PATH, TrackCatalog
from .models import Track, TreeSnapshot
from .service import TagTreeService
from .visualizer import save_tree_history

# ---------------------------------------------------------------------------
# Global state
# ---------------------------------------------------------------------------

mcp = FastMCP("Tag Tree")

config: Optional[TreeConfig] = None
catalog: Optional[TrackCatalog] = None
service: Optional[TagTreeService] = None
_initialized = False


def _ensure_initialized() -> None:
    """Lazy-initialize the catalog and tree service on first tool call."""
    global config, catalog, service, _initialized
    if _initialized:
        return

    logger.info("Initializing Tag Tree MCP server...")
    config = TreeConfig.from_env()
    raw_path = os.environ.get("TAGTREE_LIBRARY_PATH", "")
    catalog = TrackCatalog(Path(raw_path).expanduser() if raw_path else INDEX_PATH)
    count = catalog.load_from_disk()
    service = TagTreeService(source=catalog, config=config)
    _initialized = True
    logger.info(f"Tag Tree MCP ready: {count} catalog tracks")


def _parse_json_str(v: Any) -> Any:
    """Parse JSON-encoded strings into Python objects.

    MCP clients sometimes pass list arguments as a JSON string
    ('["mood:happy", "energy:high"]'); this BeforeValidator lets pydantic
    coerce the string before type-checking it.
    """
    if isinstance(v, str):
        try:
            return json.loads(v)
        except (json.JSONDecodeError, ValueError):
            return None
    return v


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _find_track(
    source: TrackCatalog,
    track_id: Optional[str] = None,
    title: Optional[str] = None,
    artist: Optional[str] = None,
) -> Optional[Track]:
    """Catalog track by id, else the first whose title (and artist) contains the given text."""
    if track_id:
        return source.get_track(track_id)
    if not title:
        return None
    t_lower = title.lower()
    a_lower = (artist or "").lower()
    for track in source.tracks():
        if t_lower in track.title.lower() and a_lower in track.artist.lower():
            return track
    return None


def _summarize_tree(snapshot: TreeSnapshot) -> Dict[str, Any]:
    """Compact, LLM-friendly view of a snapshot (no geometry)."""
    return {
        "root_id": snapshot.root_id,
        "node_count": len(snapshot.nodes),
        "connection_count": len(snapshot.connections),
        "depth": snapshot.depth,
        "nodes": [
            {
                "id": n.id,
                "title": n.track.title,
                "artist": n.track.artist,
                "depth": n.depth,
                "parent_id": n.parent_id,
                "via": n.connection_tag,
                "tags": n.track.tags,
            }
            for n in sorted(snapshot.nodes, key=lambda n: (n.depth, n.id))
        ],
    }


# ---------------------------------------------------------------------------
# Tree tools
# ---------------------------------------------------------------------------

@mcp.tool()
async def grow_tree(
    track_id: Optional[str] = None,
    title: Optional[str] = None,
    artist: Optional[str] = None,
    tags: Annotated[Optional[List[str]], BeforeValidator(_parse_json_str)] = None,
) -> Dict[str, Any]:
    """
    Grow a new tag tree from a track, replacing the current tree.

    The root's highest-priority tag categories (mood, energy, then emotion,
    style, vibe, ...) each pull in a related library track; those tracks are
    expanded again one level deeper.

    Args:
        track_id: Catalog id of the root track. Optional.
        title: Title (substring) of a catalog track, used when track_id is not given.
        artist: Artist (substring) to disambiguate the title. Optional.
        tags: Tags for an ad-hoc root not in the catalog (e.g. ["mood:happy"]).
            Used together with title and artist when no catalog track matches.

    Returns:
        Tree summary: root id, node count, depth and every node with the tag it was reached by.
    """
    _ensure_initialized()

    track = _find_track(catalog, track_id, title, artist)
    if track is None and title and tags:
        track = Track(title=title, artist=artist or "Unknown", tags=list(tags))
    if track is None:
        return {"error": f"Track '{track_id or title}' not found in catalog"}

    try:
        await service.generate_auto_tree(track)
    except TreeError as exc:
        return {"error": str(exc)}
    return _summarize_tree(service.snapshot())


@mcp.tool()
async def get_tree() -> Dict[str, Any]:
    """Return the current tree: every node, its depth, parent and connecting tag."""
    _ensure_initialized()
    return _summarize_tree(service.snapshot())


@mcp.tool()
async def suggest_tags(node_id: str) -> Dict[str, Any]:
    """
    Tags of a node's track that no branch uses yet.

    Args:
        node_id: Node id from get_tree (e.g. "node-3").
    """
    _ensure_initialized()
    try:
        return {"node_id": node_id, "tags": service.get_suggested_tags(node_id)}
    except TreeError as exc:
        return {"error": str(exc)}


@mcp.tool()
async def grow_tag_branch(node_id: str, tag: str) -> Dict[str, Any]:
    """
    Grow new branches from one node through a single tag.

    Args:
        node_id: Node to grow from.
        tag: Tag in "category:value" form, usually one from suggest_tags.

    Returns:
        The nodes that were added (may be empty at the maximum depth).
    """
    _ensure_initialized()
    try:
        grown = await service.grow_branches_for_tag(node_id, tag)
    except TreeError as exc:
        return {"error": str(exc)}
    return {
        "grown": [
            {"id": n.id, "title": n.track.title, "artist": n.track.artist, "depth": n.depth}
            for n in grown
        ],
        "node_count": len(service.registry),
    }


@mcp.tool()
async def remove_branch(node_id: str) -> Dict[str, Any]:
    """Remove a node and everything grown from it."""
    _ensure_initialized()
    removed = service.remove_subtree(node_id)
    if not removed:
        return {"success": False, "error": f"Node {node_id} not found"}
    return {"success": True, "removed": removed, "node_count": len(service.registry)}


@mcp.tool()
async def clear_tree() -> Dict[str, Any]:
    """Clear the tree and cancel any growth still in progress."""
    _ensure_initialized()
    service.clear_tree()
    return {"success": True}


@mcp.tool()
async def save_tree_visualization() -> Dict[str, Any]:
    """
    Save the current tree as a self-contained HTML/SVG page plus a JSON snapshot.

    Returns:
        Paths of the saved files under .data/tree_history/.
    """
    _ensure_initialized()
    paths = save_tree_history(service.snapshot(), config)
    logger.info(f"Tree visualization saved → {paths['html_path']}")
    return paths


# ---------------------------------------------------------------------------
# Library tools
# ---------------------------------------------------------------------------

@mcp.tool()
async def search_library(
    query: str = "",
    tag: Optional[str] = None,
    category: Optional[str] = None,
    limit: int = 20,
) -> List[Dict[str, Any]]:
    """
    Search the track catalog.

    Args:
        query: Free text matched against artist, title, album and tags. Optional.
        tag: Exact tag the track must carry (e.g. 'mood:happy'). Optional.
        category: Tag category the track must have (e.g. 'energy'). Optional.
        limit: Maximum results (default 20)
    """
    _ensure_initialized()
    results = catalog.search(query, tag=tag, category=category, limit=max(1, min(limit, 200)))
    return [
        {"id": r.get("id"), "artist": r.get("artist"), "title": r.get("title"),
         "album": r.get("album"), "tags": r.get("tags", [])}
        for r in results
    ]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Run the MCP server."""
    import argparse

    def handle_shutdown(sig, frame):
        logger.info("Shutting down Tag Tree MCP server...")
        if service is not None:
            service.clear_tree()
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    parser = argparse.ArgumentParser()
    parser.add_argument("--transport", default="stdio", choices=["stdio", "sse"])
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    logger.info("Starting Tag Tree MCP Server...")

    if args.transport == "sse":
        mcp.run(transport="sse", host=args.host, port=args.port)
    else:
        mcp.run()


if __name__ == "__main__":
    main()
