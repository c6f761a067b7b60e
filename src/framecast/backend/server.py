"""
FastAPI server for batch staging, finalize and publish.

Run:
    framecast serve --port 8000

Or:
    python -m uvicorn framecast.backend.server:app --port 8000
"""
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Callable, Optional
import asyncio
import base64
import time

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import Config
from ..errors import FramecastError, StorageError, ValidationError
from ..log import get_logger
from ..renderer import Finalizer, FinalizeRequest, probe_encoder
from ..staging import FrameBatch, SessionRegistry, SessionStager, SessionStore, reap_sessions
from ..tools.storage import ObjectStore, build_owner_path, get_object_store

log = get_logger("backend.server")


class EncodeRequest(BaseModel):
    """Finalize request body."""
    sessionId: str
    totalFrames: int
    fps: float
    width: int
    height: int


def _default_content_recorder() -> Optional[Callable[[dict], str]]:
    if not Config.SUPABASE_URL:
        return None
    from ..db.supabase_client import create_content_record
    return create_content_record


async def _reap_forever(store: SessionStore, registry: SessionRegistry, ttl_s: float, interval_s: float):
    while True:
        await asyncio.sleep(interval_s)
        try:
            await asyncio.to_thread(reap_sessions, store, registry, ttl_s)
        except Exception as e:
            log.error(f"Reaper pass failed: {e}")


def create_app(
    store: Optional[SessionStore] = None,
    registry: Optional[SessionRegistry] = None,
    finalizer: Optional[Finalizer] = None,
    object_store: Optional[ObjectStore] = None,
    record_content: Optional[Callable[[dict], str]] = None,
    session_ttl_s: Optional[float] = None,
    reaper_interval_s: Optional[float] = None,
) -> FastAPI:
    """Build the app. Every collaborator can be injected; defaults come from Config."""
    store = store or SessionStore(Config.STAGING_ROOT, fsync=Config.STAGE_FSYNC)
    registry = registry or SessionRegistry()
    stager = SessionStager(store, registry)
    finalizer = finalizer or Finalizer(store, registry)
    object_store = object_store or get_object_store()
    if record_content is None:
        record_content = _default_content_recorder()
    ttl_s = Config.SESSION_TTL_S if session_ttl_s is None else session_ttl_s
    interval_s = Config.REAPER_INTERVAL_S if reaper_interval_s is None else reaper_interval_s

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if interval_s > 0:
            log.info(f"🧹 Orphan reaper every {interval_s:.0f}s (ttl {ttl_s:.0f}s)")
            task = asyncio.create_task(_reap_forever(store, registry, ttl_s, interval_s))
        yield
        if task:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    app = FastAPI(
        title="Framecast Server",
        description="Batched frame staging and H.264 finalize",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.registry = registry
    app.state.stager = stager
    app.state.finalizer = finalizer
    app.state.object_store = object_store

    # CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FramecastError)
    async def framecast_error_handler(request: Request, exc: FramecastError):
        if exc.status_code >= 500:
            log.error(f"❌ {request.url.path}: {exc.title}: {exc.details}")
        else:
            log.warning(f"⚠️  {request.url.path}: {exc.title}: {exc.details}")
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse({"error": "Invalid request", "details": details}, status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        log.error(f"❌ {request.url.path}: unexpected {type(exc).__name__}: {exc}", exc_info=exc)
        return JSONResponse({"error": "Internal error", "details": str(exc)}, status_code=500)

    # ─────────────────────────────────────────────────────────────
    # Capture endpoints
    # ─────────────────────────────────────────────────────────────

    @app.post("/upload-frame-batch")
    def upload_frame_batch(
        sessionId: str = Form(...),
        batchNumber: int = Form(...),
        startFrame: int = Form(...),
        frameCount: int = Form(...),
        width: int = Form(...),
        height: int = Form(...),
        frameData: UploadFile = File(...),
    ):
        """Stage one batch of raw RGBA frames."""
        log.info(f"📦 Batch {batchNumber}: {frameCount} frames starting at {startFrame}")
        payload = frameData.file.read()
        written = stager.stage_batch(FrameBatch(
            session_id=sessionId,
            batch_number=batchNumber,
            start_frame=startFrame,
            frame_count=frameCount,
            width=width,
            height=height,
            payload=payload,
        ))
        return {"success": True, "framesWritten": written}

    @app.post("/encode-from-batches")
    def encode_from_batches(request: EncodeRequest):
        """Encode every staged frame of a session into an MP4."""
        artifact = finalizer.finalize(FinalizeRequest(
            session_id=request.sessionId,
            total_frames=request.totalFrames,
            fps=request.fps,
            width=request.width,
            height=request.height,
        ))
        return {
            "success": True,
            "sessionId": artifact.session_id,
            "videoBase64": base64.b64encode(artifact.data).decode("ascii"),
            "size": artifact.size,
            "contentType": artifact.content_type,
        }

    @app.get("/sessions/{session_id}")
    def get_session(session_id: str):
        """State and staged-frame count of a session."""
        session = registry.get(session_id)
        on_disk = store.exists(session_id)
        if session is None and not on_disk:
            raise HTTPException(status_code=404, detail="Session not found")

        summary = session.get_summary() if session else {"sessionId": session_id, "state": "collecting"}
        summary["stagedFrames"] = store.frame_count(session_id) if on_disk else 0
        return summary

    # ─────────────────────────────────────────────────────────────
    # Publish
    # ─────────────────────────────────────────────────────────────

    @app.post("/upload-enhanced-video")
    def upload_enhanced_video(
        file: UploadFile = File(...),
        ownerId: str = Form(...),
    ):
        """Persist a finished video under the owner's storage path."""
        data = file.file.read()
        if not data:
            raise ValidationError("No video file provided")

        filename = Path(file.filename or "").name
        if not filename.endswith(".mp4"):
            filename = f"enhanced-video-{int(time.time() * 1000)}.mp4"

        stored = object_store.store(build_owner_path(ownerId, filename), data, "video/mp4")

        content_id = None
        if record_content is not None:
            from ..db.supabase_client import build_video_record
            try:
                content_id = record_content(
                    build_video_record(ownerId, stored, title=Path(filename).stem)
                )
            except Exception as e:
                object_store.delete(stored.storage_path)
                raise StorageError(f"Saving content record failed: {e}") from e

        log.info(f"✅ Enhanced video saved: {stored.public_ref}")
        return {
            "success": True,
            "publicUrl": stored.public_ref,
            "storagePath": stored.storage_path,
            "size": stored.size,
            "contentId": content_id,
        }

    # ─────────────────────────────────────────────────────────────
    # Health Check
    # ─────────────────────────────────────────────────────────────

    @app.get("/health")
    def health():
        """Health check endpoint."""
        encoder_ok, encoder_msg = probe_encoder(finalizer.settings.ffmpeg_path)
        return {
            "status": "ok",
            "service": "framecast",
            "encoder": {"available": encoder_ok, "message": encoder_msg},
            "strategy": finalizer.strategy,
            "activeSessions": len(registry.active_ids()),
        }

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "Framecast Server",
            "version": "1.0.0",
            "endpoints": {
                "upload_frame_batch": "POST /upload-frame-batch - Stage a batch of raw frames",
                "encode_from_batches": "POST /encode-from-batches - Finalize a session into MP4",
                "upload_enhanced_video": "POST /upload-enhanced-video - Publish a finished video",
                "session": "GET /sessions/{id} - Session state",
                "health": "GET /health - Health check",
            },
        }

    return app


def __getattr__(name: str):
    # `uvicorn framecast.backend.server:app` builds the app on first access
    if name == "app":
        app = create_app()
        globals()["app"] = app
        return app
    raise AttributeError(name)
