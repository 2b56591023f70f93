"""
FlowSynth — FastAPI Server
REST API for the block canvas: definition palette, graph documents with
version history, mutations, sub-graph navigation and code synthesis.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError

from flowsynth.compiler.errors import FlowSynthError, GraphMutationError
from flowsynth.compiler.editor import Editor, parse_mutation
from flowsynth.compiler.persistence import GraphRecord
from flowsynth.compiler.registry import GraphDocument, GraphRegistry
from flowsynth.config.settings import settings

logger = logging.getLogger(__name__)


# ── Global Instances ──────────────────────────────────────────────────────────

graph_registry = GraphRegistry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and teardown service resources."""
    logging.basicConfig(level=settings.log_level.upper())
    print("[FLOWSYNTH] Starting...")
    print(f"[FLOWSYNTH]   Environment: {settings.environment}")
    print(f"[FLOWSYNTH]   Block definitions: {len(graph_registry.definitions)}")
    print(
        f"[FLOWSYNTH]   Limits: recursion={settings.recursion_limit}, "
        f"timeout={settings.synthesis_timeout_seconds}s"
    )
    yield
    print("[FLOWSYNTH] Shutting down")


app = FastAPI(
    title=settings.api_title,
    description="Block-graph code synthesis: build graphs of blocks and wires, get program text back.",
    version=settings.api_version,
    lifespan=lifespan,
)

# ── CORS (origins from settings) ─────────────────────────────────────────────
_cors_origins_raw = settings.cors_allowed_origins
_cors_origins = ["*"] if _cors_origins_raw.strip() == "*" else [o.strip() for o in _cors_origins_raw.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request Models ────────────────────────────────────────────────────────────

class CreateGraphRequest(BaseModel):
    name: str
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    graph: Optional[Dict[str, Any]] = None


class UpdateGraphRequest(BaseModel):
    graph: Dict[str, Any]
    change_note: str = ""


class MutationRequest(BaseModel):
    mutations: List[Dict[str, Any]]
    change_note: str = ""


class SynthesizeRequest(BaseModel):
    compile_bodies: bool = False


def _require_editor(graph_id: str) -> Editor:
    editor = graph_registry.open_editor(graph_id)
    if editor is None:
        raise HTTPException(404, f"Graph '{graph_id}' not found")
    return editor


def _summary(g: GraphDocument) -> Dict[str, Any]:
    return {
        "graph_id": g.graph_id,
        "name": g.name,
        "description": g.description,
        "tags": g.tags,
        "node_count": len(g.record.nodes),
        "edge_count": len(g.record.edges),
        "version": g.version_info.version,
        "updated_at": g.updated_at.isoformat(),
    }


def _session_state(editor: Editor) -> Dict[str, Any]:
    return {
        "breadcrumb": editor.subgraphs.breadcrumb(),
        "depth": editor.subgraphs.depth,
        "stats": editor.store.get_stats(),
    }


# ══════════════════════════════════════════════════════════════════════════════
# HEALTH & INFO
# ══════════════════════════════════════════════════════════════════════════════

@app.get("/health", tags=["System"])
async def health():
    return {
        "status": "ok",
        "version": settings.api_version,
        "definitions_loaded": len(graph_registry.definitions),
    }


@app.get("/info", tags=["System"])
async def service_info():
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "environment": settings.environment,
        "recursion_limit": settings.recursion_limit,
        "synthesis_timeout_seconds": settings.synthesis_timeout_seconds,
        "definitions": graph_registry.definitions.get_stats(),
        "graphs": graph_registry.get_stats(),
    }


# ══════════════════════════════════════════════════════════════════════════════
# DEFINITIONS
# ══════════════════════════════════════════════════════════════════════════════

@app.get("/definitions", tags=["Definitions"])
async def list_definitions(category: Optional[str] = Query(default=None)):
    """List block categories and their definitions."""
    definitions = graph_registry.definitions.list_definitions(category)
    return {
        "categories": graph_registry.definitions.list_categories(),
        "count": len(definitions),
        "definitions": [d.describe() for d in definitions],
    }


@app.get("/definitions/{category}/{node_type}", tags=["Definitions"])
async def get_definition(category: str, node_type: str):
    definition = graph_registry.definitions.lookup(category, node_type)
    if not definition:
        raise HTTPException(404, f"Definition '{category}.{node_type}' not found")
    return definition.describe()


# ══════════════════════════════════════════════════════════════════════════════
# GRAPHS
# ══════════════════════════════════════════════════════════════════════════════

@app.get("/graphs", tags=["Graphs"])
async def list_graphs():
    graphs = graph_registry.list_all()
    return {"count": len(graphs), "graphs": [_summary(g) for g in graphs]}


@app.get("/graphs/stats", tags=["Graphs"])
async def graph_stats():
    return graph_registry.get_stats()


@app.get("/graphs/search/{query}", tags=["Graphs"])
async def search_graphs(query: str):
    results = graph_registry.search(query)
    return {"count": len(results), "results": [{"graph_id": g.graph_id, "name": g.name} for g in results]}


@app.post("/graphs", tags=["Graphs"])
async def create_graph(req: CreateGraphRequest):
    try:
        record = GraphRecord.model_validate(req.graph or {})
    except ValidationError as e:
        raise HTTPException(400, f"Invalid graph record: {e}")
    document = GraphDocument(name=req.name, description=req.description, tags=req.tags, record=record)
    created = graph_registry.create(document)
    return {"status": "created", "graph_id": created.graph_id, "version": created.version_info.version}


@app.post("/graphs/import", tags=["Graphs"])
async def import_graph(data: dict):
    try:
        document = graph_registry.import_graph(data)
    except ValidationError as e:
        raise HTTPException(400, f"Invalid graph record: {e}")
    return {"status": "imported", "graph_id": document.graph_id}


@app.get("/graphs/{graph_id}", tags=["Graphs"])
async def get_graph(graph_id: str):
    document = graph_registry.get(graph_id)
    if not document:
        raise HTTPException(404, f"Graph '{graph_id}' not found")
    data = _summary(document)
    data["graph"] = document.record.model_dump(mode="json", by_alias=True)
    return data


@app.put("/graphs/{graph_id}", tags=["Graphs"])
async def update_graph(graph_id: str, req: UpdateGraphRequest):
    """Replace a graph's content (creates a new version)."""
    if not graph_registry.get(graph_id):
        raise HTTPException(404, f"Graph '{graph_id}' not found")
    try:
        record = GraphRecord.model_validate(req.graph)
    except ValidationError as e:
        raise HTTPException(400, f"Invalid graph record: {e}")
    result = graph_registry.update(graph_id, record, req.change_note)
    return {"status": "updated", "version": result.version_info.version}


@app.delete("/graphs/{graph_id}", tags=["Graphs"])
async def delete_graph(graph_id: str):
    if not graph_registry.delete(graph_id):
        raise HTTPException(404, f"Graph '{graph_id}' not found")
    return {"status": "deleted"}


@app.get("/graphs/{graph_id}/versions", tags=["Graphs"])
async def list_graph_versions(graph_id: str):
    versions = graph_registry.list_versions(graph_id)
    if not versions:
        raise HTTPException(404, f"Graph '{graph_id}' not found")
    return {"graph_id": graph_id, "versions": versions}


@app.post("/graphs/{graph_id}/rollback/{version}", tags=["Graphs"])
async def rollback_graph(graph_id: str, version: int):
    result = graph_registry.rollback(graph_id, version)
    if not result:
        raise HTTPException(404, f"Version {version} not found")
    return {"status": "rolled_back", "new_version": result.version_info.version}


@app.get("/graphs/{graph_id}/export", tags=["Graphs"])
async def export_graph(graph_id: str):
    data = graph_registry.export_graph(graph_id)
    if not data:
        raise HTTPException(404, f"Graph '{graph_id}' not found")
    return data


# ══════════════════════════════════════════════════════════════════════════════
# EDITING & SYNTHESIS
# ══════════════════════════════════════════════════════════════════════════════

@app.post("/graphs/{graph_id}/mutations", tags=["Editing"])
async def apply_mutations(graph_id: str, req: MutationRequest):
    """
    Apply mutations in order to the active graph of the session. Stops at the
    first rejected mutation; the mutations applied before it are committed.
    """
    editor = _require_editor(graph_id)
    results = []
    error = None
    for raw in req.mutations:
        try:
            mutation = parse_mutation(raw)
            results.append(editor.mutate(mutation).model_dump())
        except ValidationError as e:
            error = {"error_type": "ValidationError", "message": str(e)}
            break
        except GraphMutationError as e:
            error = {"error_type": e.error_type, "message": e.message}
            break

    if error is None or results:
        note = req.change_note or f"{len(results)} mutation(s)"
        document = graph_registry.commit(graph_id, change_note=note)
    else:
        document = graph_registry.get(graph_id)
    version = document.version_info.version
    if error is not None:
        raise HTTPException(400, {**error, "applied": results, "version": version})
    return {"status": "applied", "results": results, "version": version}


@app.post("/graphs/{graph_id}/synthesize", tags=["Editing"])
async def synthesize_graph(graph_id: str, req: Optional[SynthesizeRequest] = None):
    """Synthesize the session's active graph into program text."""
    editor = _require_editor(graph_id)
    result = await editor.job(compile_bodies=bool(req and req.compile_bodies)).run_async()
    if not result.success:
        raise HTTPException(422, {"error_type": result.error_type, "message": result.error})
    return result.model_dump(mode="json")


@app.post("/graphs/{graph_id}/subgraphs/{node_id}/enter", tags=["Editing"])
async def enter_subgraph(graph_id: str, node_id: str):
    editor = _require_editor(graph_id)
    try:
        editor.subgraphs.enter(node_id)
    except FlowSynthError as e:
        raise HTTPException(400, {"error_type": e.error_type, "message": e.message})
    return _session_state(editor)


@app.post("/graphs/{graph_id}/subgraphs/leave", tags=["Editing"])
async def leave_subgraph(graph_id: str, level: Optional[int] = Query(default=None)):
    """Leave the open body (or pop back to `level`), caching compiled bodies."""
    editor = _require_editor(graph_id)
    try:
        if level is None:
            results = [editor.subgraphs.leave()]
        else:
            results = editor.subgraphs.leave_to(level)
    except FlowSynthError as e:
        raise HTTPException(400, {"error_type": e.error_type, "message": e.message})
    graph_registry.commit(graph_id, change_note="Compiled sub-graph body")
    state = _session_state(editor)
    state["compiled"] = [r.model_dump(mode="json") for r in results]
    return state


@app.get("/graphs/{graph_id}/subgraphs", tags=["Editing"])
async def subgraph_state(graph_id: str):
    return _session_state(_require_editor(graph_id))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
