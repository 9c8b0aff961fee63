import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from . import config
from .analysis import AnalysisAdapter
from .errors import ImageShelfError
from .store import ImageStore, create_store

config.configure_logging()
logger = logging.getLogger(__name__)

__version__ = "1.2.0"

# --- Application Initialization ---
app = FastAPI(
    title="imageshelf",
    description="A small image library with tag search and AI-assisted descriptions.",
    version=__version__,
)

os.makedirs(config.UPLOADS_DIR, exist_ok=True)
os.makedirs(config.DATA_DIR, exist_ok=True)
os.makedirs(config.PUBLIC_DIR, exist_ok=True)
os.makedirs(config.TMP_DIR, exist_ok=True)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

NO_CACHE_SUFFIXES = (".html", ".css", ".js")
# User uploads and API responses are not part of the front-end bundle.
BUNDLE_EXCLUDED_PREFIXES = ("/api/", "/uploads/")

@app.middleware("http")
async def no_cache_front_end(request: Request, call_next):
    """Stops browsers from caching the front-end bundle while developing."""
    response = await call_next(request)
    if config.DEV_MODE and not request.url.path.startswith(BUNDLE_EXCLUDED_PREFIXES):
        path = request.url.path
        is_page = path.endswith("/") or path.endswith(NO_CACHE_SUFFIXES)
        if is_page or response.headers.get("content-type", "").startswith("text/html"):
            response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
    return response

@app.exception_handler(ImageShelfError)
async def imageshelf_error_handler(request: Request, exc: ImageShelfError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code)

# --- Store Configuration ---
# Loaded once at startup; a corrupt document stops the application here.
store = create_store(config.STORE_BACKEND, config.DOCUMENT_PATH, config.DATABASE_URL, config.UPLOADS_DIR)
store.load()

analyzer = AnalysisAdapter()

# --- Dependencies ---
def get_store() -> ImageStore:
    return store

def get_analyzer() -> AnalysisAdapter:
    return analyzer

# Import routes after the app and store setup are complete
from . import routes

# --- Static File Configuration ---
# Mounted last: "/" would otherwise shadow the API routes.
app.mount("/uploads", StaticFiles(directory=config.UPLOADS_DIR), name="uploads")
app.mount("/", StaticFiles(directory=config.PUBLIC_DIR, html=True), name="public")
