"""FastAPI entrypoint for the Jarvis search backend."""

from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI, HTTPException

from config import settings
from embedder import ProviderUnavailableError
from models import DeleteNoteRequest, SearchRequest, SearchResponsePayload, UpdateNoteRequest
from services import NoteService

logger = logging.getLogger(__name__)

app = FastAPI(title="Jarvis Search Backend", description="Semantic search over notes")

note_service = NoteService(settings=settings)


def _to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ProviderUnavailableError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, FileNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    logger.exception("Request failed")
    return HTTPException(status_code=500, detail=str(exc))


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok", "message": "Jarvis search backend is running"}


@app.post("/update-note", tags=["notes"])
async def update_note(request: UpdateNoteRequest):
    try:
        blocks = await note_service.save_note(request)
        return {"success": True, "note_id": request.note_id, "blocks": blocks}
    except Exception as exc:
        raise _to_http_error(exc)


@app.post("/delete-note", tags=["notes"])
async def delete_note(request: DeleteNoteRequest):
    try:
        deleted = await note_service.delete_note(request.note_id)
    except Exception as exc:
        raise _to_http_error(exc)
    if not deleted:
        raise HTTPException(status_code=404, detail="Note not found")
    return {"success": True, "note_id": request.note_id}


@app.post("/search", response_model=SearchResponsePayload, tags=["search"])
async def search(request: SearchRequest):
    try:
        return await note_service.search(request)
    except Exception as exc:
        raise _to_http_error(exc)


@app.post("/admin/rebuild-index", tags=["admin"])
async def rebuild_index():
    try:
        blocks = await note_service.rebuild_index()
        return {"success": True, "blocks": blocks}
    except Exception as exc:
        raise _to_http_error(exc)


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(app, host="127.0.0.1", port=8000)
