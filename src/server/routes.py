"""API routes for the web server."""

import asyncio
import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response
from sse_starlette.sse import EventSourceResponse

from .app import get_session, get_shutdown_event
from .models import (
    ModelImagesRequest,
    OutfitImageRequest,
    OutfitDescriptionRequest,
    VariationRequest,
    ProgressInfo,
    ModelImageInfo,
    OutfitInfo,
    ResultInfo,
    SessionResponse,
    MessageResponse,
)

# Import from parent directory
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))
from config import settings
from errors import BatchError, PostProcessError, ValidationError
from image_codec import decode_upload, download_filename, to_png_bytes
from session import TryOnSession


router = APIRouter()

NO_STORE = {"Cache-Control": "no-store"}


def build_snapshot(session: TryOnSession) -> SessionResponse:
    """Serialize the session for the UI."""
    batch = session.batch
    models = [
        ModelImageInfo(index=i, media_type=image.media_type, preview_url=f"/preview/{handle}")
        for i, (image, handle) in enumerate(zip(session.model_images, session.model_previews))
    ]
    outfits = []
    for slot, outfit in enumerate(session.outfits):
        handle = session.preview_for_outfit(outfit)
        outfits.append(OutfitInfo(
            slot=slot,
            id=outfit.id,
            description=outfit.description,
            has_image=outfit.image is not None,
            preview_url=f"/preview/{handle}" if handle else None,
            valid=outfit.is_valid,
        ))
    results = [
        ResultInfo(
            index=i,
            instruction=result.instruction,
            upscaled=result.upscaled,
            pending=session.is_pending(i),
            image_url=f"/api/results/{i}/image",
            original_url=f"/api/results/{i}/original",
            download_url=f"/api/results/{i}/download",
            download_name=download_filename(i, result.upscaled),
        )
        for i, result in enumerate(session.results)
    ]
    return SessionResponse(
        status=session.status,
        batch_id=batch.id if batch else None,
        message=batch.message if batch else "",
        error=session.error,
        progress=ProgressInfo(
            percent=session.progress.percent,
            message=session.progress.message,
            seconds_remaining=session.progress.seconds_remaining,
        ),
        models=models,
        outfits=outfits,
        results=results,
        job_count=len(batch.jobs) if batch else 0,
        failure_count=batch.failure_count if batch else 0,
    )


def _result_or_404(session: TryOnSession, index: int):
    results = session.results
    if not 0 <= index < len(results):
        raise HTTPException(status_code=404, detail="Result not found")
    return results[index]


# ----------------------------------------------------------------------------
# Session Endpoints
# ----------------------------------------------------------------------------

@router.get("/api/session", response_model=SessionResponse)
async def get_session_state():
    """Get a snapshot of the session."""
    return build_snapshot(get_session())


@router.post("/api/reset", response_model=MessageResponse)
async def reset_session():
    """Start over: discard all inputs, results and previews."""
    get_session().reset()
    return MessageResponse(message="Session reset")


@router.get("/api/events")
async def sse_events(request: Request):
    """SSE endpoint for progress and result updates."""
    queue = asyncio.Queue(maxsize=settings.server.sse_queue_size)
    session = get_session()

    def on_event(event: str, data: dict):
        try:
            queue.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            logging.warning(f"SSE queue full, dropped event: {event}")

    # Register listener BEFORE taking the snapshot to avoid missing events
    session.add_listener(on_event)

    async def event_generator() -> AsyncGenerator:
        try:
            shutdown = get_shutdown_event()
        except RuntimeError:
            shutdown = None

        try:
            yield {
                "event": "status",
                "data": build_snapshot(session).model_dump_json(),
            }

            while True:
                if shutdown and shutdown.is_set():
                    break

                if await request.is_disconnected():
                    break

                try:
                    msg = await asyncio.wait_for(queue.get(), timeout=settings.server.sse_timeout)
                    yield {
                        "event": msg["event"],
                        "data": json.dumps(msg["data"]),
                    }
                except asyncio.TimeoutError:
                    # Send keepalive
                    yield {"event": "ping", "data": ""}

        finally:
            session.remove_listener(on_event)

    return EventSourceResponse(event_generator())


@router.get("/preview/{handle}")
async def get_preview(handle: str):
    """Serve a selected image by its preview handle."""
    image = get_session().previews.get(handle)
    if image is None:
        raise HTTPException(status_code=404, detail="Preview not found")
    return Response(content=image.data, media_type=image.media_type)


# ----------------------------------------------------------------------------
# Selection Endpoints
# ----------------------------------------------------------------------------

@router.put("/api/models", response_model=SessionResponse)
async def set_model_images(req: ModelImagesRequest):
    """Replace the model image selection."""
    try:
        images = [decode_upload(img.data, img.media_type) for img in req.images]
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    session = get_session()
    session.on_selection_changed(images)
    return build_snapshot(session)


@router.post("/api/outfits", response_model=SessionResponse)
async def add_outfit():
    """Append an empty outfit slot."""
    session = get_session()
    session.add_outfit()
    return build_snapshot(session)


@router.delete("/api/outfits/{slot}", response_model=SessionResponse)
async def remove_outfit(slot: int):
    """Remove an outfit slot."""
    session = get_session()
    try:
        session.remove_outfit(slot)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return build_snapshot(session)


@router.put("/api/outfits/{slot}/image", response_model=SessionResponse)
async def set_outfit_image(slot: int, req: OutfitImageRequest):
    """Set or clear the image of an outfit slot."""
    session = get_session()
    try:
        files = [decode_upload(req.image.data, req.image.media_type)] if req.image else []
        session.on_outfit_selection_changed(slot, files)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return build_snapshot(session)


@router.put("/api/outfits/{slot}/description", response_model=SessionResponse)
async def set_outfit_description(slot: int, req: OutfitDescriptionRequest):
    """Update the description of an outfit slot."""
    session = get_session()
    try:
        session.on_text_changed(slot, req.description)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return build_snapshot(session)


# ----------------------------------------------------------------------------
# Generation Endpoints
# ----------------------------------------------------------------------------

@router.post("/api/generate", response_model=SessionResponse)
async def generate():
    """Run a batch for the current selection and return the settled state."""
    session = get_session()
    if session.is_generating:
        raise HTTPException(status_code=409, detail="Generation already in progress")

    try:
        await session.request_generate()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except BatchError as e:
        raise HTTPException(status_code=422, detail=session.error or str(e))

    return build_snapshot(session)


@router.post("/api/results/clear", response_model=SessionResponse)
async def clear_results():
    """Drop results but keep the selection to try another outfit."""
    session = get_session()
    session.clear_results()
    return build_snapshot(session)


@router.post("/api/results/{index}/variation", response_model=SessionResponse)
async def request_variation(index: int, req: VariationRequest):
    """Regenerate one result with a new instruction."""
    session = get_session()
    _result_or_404(session, index)

    try:
        await session.request_variation(index, req.instruction)
    except PostProcessError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return build_snapshot(session)


@router.post("/api/results/{index}/upscale", response_model=SessionResponse)
async def request_upscale(index: int):
    """Upscale the displayed image of one result."""
    session = get_session()
    _result_or_404(session, index)

    try:
        await session.request_upscale(index)
    except PostProcessError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return build_snapshot(session)


@router.get("/api/results/{index}/image")
async def get_result_image(index: int):
    """Serve the current generated image of a result as PNG."""
    result = _result_or_404(get_session(), index)
    try:
        content = to_png_bytes(result.image)
    except ValidationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return Response(content=content, media_type="image/png", headers=NO_STORE)


@router.get("/api/results/{index}/original")
async def get_result_original(index: int):
    """Serve the model image a result was generated from."""
    result = _result_or_404(get_session(), index)
    return Response(content=result.base.data, media_type=result.base.media_type)


@router.get("/api/results/{index}/download")
async def download_result(index: int):
    """Download a result as a PNG attachment."""
    result = _result_or_404(get_session(), index)
    try:
        content = to_png_bytes(result.image)
    except ValidationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    filename = download_filename(index, result.upscaled)
    return Response(
        content=content,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{filename}"', **NO_STORE},
    )
