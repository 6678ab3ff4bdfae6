"""FastAPI server: admin controls and the post-render capture hook."""

import json
import os
import threading

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from static_snapshot.config import GENERATOR_VERSION, load_config
from static_snapshot.core import StaticSite
from static_snapshot.db import Database
from static_snapshot.logger import setup_logger
from static_snapshot.models import RequestContext

load_dotenv()

app = FastAPI(
    title="Static Snapshot API",
    version=GENERATOR_VERSION,
    description=(
        "Admin and capture endpoints for the static snapshot generator. "
        "Hosts POST rendered pages to /api/capture; operators toggle generation, "
        "drain the asset queue, clear the tree and export ZIP archives."
    ),
)

# --- Rate limiting ---
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return Response(
        content=json.dumps({"error": "Rate limit exceeded. Please slow down."}),
        status_code=429,
        media_type="application/json",
    )


# --- CORS ---
default_origins = "http://localhost:3000,http://127.0.0.1:3000"
cors_origins = os.environ.get("CORS_ORIGINS", default_origins).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def generator_header_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Static-Snapshot"] = GENERATOR_VERSION
    return response


_site = None
_site_lock = threading.Lock()


def get_site() -> StaticSite:
    global _site
    with _site_lock:
        if _site is None:
            config = load_config(os.environ.get("SNAPSHOT_CONFIG", "config.yaml"))
            setup_logger(config.log_dir, config.log_level)
            _site = StaticSite(config, Database(config.db_path))
        return _site


# --- Models ---

class CaptureRequest(BaseModel):
    html: str
    path: str = "/"
    method: str = "GET"
    is_admin: bool = False
    logged_in: bool = False
    page_type: str = "normal"


# --- Routes ---

@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "static-snapshot", "version": GENERATOR_VERSION}


@app.get("/api/status")
def status(site: StaticSite = Depends(get_site)):
    return site.status()


@app.post("/api/enable")
def enable(site: StaticSite = Depends(get_site)):
    site.enable()
    return {"enabled": True}


@app.post("/api/disable")
def disable(site: StaticSite = Depends(get_site)):
    site.disable()
    return {"enabled": False}


@app.post("/api/process")
@limiter.limit("30/minute")
def process(request: Request, site: StaticSite = Depends(get_site)):
    """Interactive batch. Callers poll until ``remaining`` reaches zero."""
    result = site.process_pending_batch()
    data = result.as_dict()
    data["message"] = f"Processed {result.processed} assets. {result.remaining} remaining."
    return data


@app.post("/api/clear")
@limiter.limit("5/minute")
def clear(request: Request, site: StaticSite = Depends(get_site)):
    return {"success": site.clear_all()}


@app.post("/api/archive")
@limiter.limit("5/minute")
def archive(request: Request, site: StaticSite = Depends(get_site)):
    path = site.create_archive()
    if not path or not os.path.exists(path):
        raise HTTPException(status_code=500, detail="ZIP creation failed")
    return FileResponse(path, media_type="application/zip", filename=os.path.basename(path))


@app.post("/api/capture", status_code=202)
@limiter.limit("120/minute")
def capture(request: Request, req: CaptureRequest, site: StaticSite = Depends(get_site)):
    """Post-render hook. The host keeps serving its own response; this only records a copy."""
    ctx = RequestContext(
        path=req.path,
        method=req.method,
        is_admin=req.is_admin,
        logged_in=req.logged_in,
        page_type=req.page_type,
    )
    page = site.capture(req.html, req.path, ctx)
    return {"captured": page is not None, "path": req.path}
