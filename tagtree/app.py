"""
FastAPI Web Application for Tag Tree

Endpoints:
  GET    /api/tree                            - Current tree snapshot (nodes, connections, connectors)
  POST   /api/tree/nodes                      - Add one node by hand (root or child)
  DELETE /api/tree/nodes/{id}                 - Remove a node and its subtree
  POST   /api/tree/clear                      - Clear the tree, cancelling pending growth
  POST   /api/tree/generate                   - Grow a full tree from a dropped track
  POST   /api/tree/nodes/{id}/grow            - Grow one tag's branches from a node
  GET    /api/tree/nodes/{id}/suggested-tags  - Tags of a node not used by its connections yet
  GET    /api/tree/render                     - Self-contained HTML/SVG rendering of the tree

  GET    /api/library/search                  - Search the track catalog
  GET    /api/library/stats                   - Catalog statistics
"""

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from loguru import logger
from pydantic import BaseModel

from .config import TreeConfig
from .errors import DuplicateError, NodeNotFoundError, RootExistsError, TreeError, ValidationError
from .library_index import INDEX_PATH, TrackCatalog
from .models import Position, Track
from .service import TagTreeService
from .visualizer import render_html, save_tree_history

# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

config: TreeConfig = TreeConfig()
catalog: Optional[TrackCatalog] = None
service: Optional[TagTreeService] = None


def _catalog_path() -> Path:
    raw = os.environ.get("TAGTREE_LIBRARY_PATH", "")
    return Path(raw).expanduser() if raw else INDEX_PATH


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    global config, catalog, service

    config = TreeConfig.from_env()
    catalog = TrackCatalog(_catalog_path())
    count = catalog.load_from_disk()
    if count:
        logger.info(f"Track catalog loaded from disk: {count} tracks")
    else:
        logger.warning(f"Track catalog at {_catalog_path()} is empty or missing; growth will find no tracks.")

    service = TagTreeService(source=catalog, config=config)
    logger.info(f"Tag Tree ready (max_levels={config.max_levels}, time_scale={config.time_scale}).")

    yield

    # Shutdown
    service.clear_tree()


app = FastAPI(title="Tag Tree", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


_STATUS_BY_ERROR = {
    ValidationError: 422,
    DuplicateError: 409,
    RootExistsError: 409,
    NodeNotFoundError: 404,
}


@app.exception_handler(TreeError)
async def tree_error_handler(request: Request, exc: TreeError):
    status = next((code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 400)
    return JSONResponse({"detail": str(exc)}, status_code=status)


def _service() -> TagTreeService:
    if service is None:
        raise HTTPException(status_code=503, detail="Tree service not initialised")
    return service


def _catalog() -> TrackCatalog:
    if catalog is None:
        raise HTTPException(status_code=503, detail="Track catalog not loaded")
    return catalog


# ---------------------------------------------------------------------------
# Routes — Tree
# ---------------------------------------------------------------------------

@app.get("/api/tree")
async def get_tree():
    """Current tree snapshot; a stale layout is recomputed first."""
    return JSONResponse(_service().snapshot().model_dump(mode="json"))


class AddNodeRequest(BaseModel):
    track: Track
    position: Optional[Position] = None
    parent_id: Optional[str] = None
    connection_tag: Optional[str] = None


@app.post("/api/tree/nodes", status_code=201)
async def add_node(body: AddNodeRequest):
    svc = _service()
    node_id = svc.add_node(
        body.track,
        position=body.position,
        parent_id=body.parent_id,
        connection_tag=body.connection_tag,
    )
    node = svc.registry.require(node_id)
    return JSONResponse(node.model_dump(mode="json"), status_code=201)


@app.delete("/api/tree/nodes/{node_id}")
async def remove_node(node_id: str):
    removed = _service().remove_subtree(node_id)
    if not removed:
        raise HTTPException(status_code=404, detail=f"Node {node_id} not found")
    return JSONResponse({"removed": removed})


@app.post("/api/tree/clear")
async def clear_tree():
    _service().clear_tree()
    return JSONResponse({"success": True})


class GenerateRequest(BaseModel):
    """Grow from an explicit track, or from a catalog track by id."""

    track: Optional[Track] = None
    track_id: Optional[str] = None
    position: Optional[Position] = None


@app.post("/api/tree/generate")
async def generate_tree(body: GenerateRequest):
    svc = _service()
    track = body.track
    if track is None and body.track_id:
        track = _catalog().get_track(body.track_id)
        if track is None:
            raise HTTPException(status_code=404, detail=f"Track {body.track_id} not in catalog")
    if track is None:
        raise HTTPException(status_code=422, detail="Provide either track or track_id")

    root = await svc.generate_auto_tree(track, body.position)
    snapshot = svc.snapshot()
    return JSONResponse({
        "root_id": root.id,
        "node_count": len(snapshot.nodes),
        "depth": snapshot.depth,
        "tree": snapshot.model_dump(mode="json"),
    })


class GrowRequest(BaseModel):
    tag: str


@app.post("/api/tree/nodes/{node_id}/grow")
async def grow_node(node_id: str, body: GrowRequest):
    grown = await _service().grow_branches_for_tag(node_id, body.tag)
    return JSONResponse({"grown": [n.model_dump(mode="json") for n in grown]})


@app.get("/api/tree/nodes/{node_id}/suggested-tags")
async def suggested_tags(node_id: str):
    return JSONResponse({"node_id": node_id, "tags": _service().get_suggested_tags(node_id)})


@app.get("/api/tree/render")
async def render_tree(save: bool = False):
    """HTML/SVG rendering of the current tree; ``save=true`` also writes it to the history folder."""
    svc = _service()
    snapshot = svc.snapshot()
    if save:
        paths = save_tree_history(snapshot, config)
        logger.info(f"Tree visualization saved → {paths['html_path']}")
    return HTMLResponse(render_html(snapshot, config))


# ---------------------------------------------------------------------------
# Routes — Library
# ---------------------------------------------------------------------------

@app.get("/api/library/search")
async def library_search(
    q: str = "",
    tag: Optional[str] = None,
    category: Optional[str] = None,
    limit: int = 20,
):
    results = _catalog().search(q, tag=tag, category=category, limit=max(1, min(limit, 200)))
    tracks = [{k: v for k, v in r.items() if not k.startswith("_")} for r in results]
    return JSONResponse({"count": len(tracks), "tracks": tracks})


@app.get("/api/library/stats")
async def library_stats():
    return JSONResponse(_catalog().stats())


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    port = int(os.environ.get("TAGTREE_PORT", "8890"))
    logger.info(f"Starting Tag Tree on port {port}")
    uvicorn.run(
        "tagtree.app:app",
        host="0.0.0.0",
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    main()
