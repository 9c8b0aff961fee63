import logging
import os
import sys

# --- Path Configuration ---
if getattr(sys, 'frozen', False):
    # If the application is run as a bundle, the project root is where the executable is.
    PROJECT_ROOT = os.path.dirname(sys.executable)
else:
    # In development, __file__ is /imageshelf/config.py, so we go up one level to the project root.
    PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

ROOT_DIR = os.path.abspath(os.environ.get("IMAGESHELF_ROOT", PROJECT_ROOT))

# --- Constants ---
UPLOADS_DIR = os.environ.get("IMAGESHELF_UPLOADS_DIR", os.path.join(ROOT_DIR, "uploads"))
DATA_DIR = os.environ.get("IMAGESHELF_DATA_DIR", os.path.join(ROOT_DIR, "data"))
PUBLIC_DIR = os.environ.get("IMAGESHELF_PUBLIC_DIR", os.path.join(ROOT_DIR, "public"))
DOCUMENT_PATH = os.path.join(DATA_DIR, "db.json")
# Scratch space for images sent to the analysis endpoint; files live only for one request.
TMP_DIR = os.environ.get("IMAGESHELF_TMP_DIR", os.path.join(ROOT_DIR, "tmp"))

# "json" keeps the single-document layout, "sql" stores one row per record.
STORE_BACKEND = os.environ.get("IMAGESHELF_STORE", "json").strip().lower()
DATABASE_URL = os.environ.get(
    "IMAGESHELF_DATABASE_URL", f"sqlite:///{os.path.join(DATA_DIR, 'imageshelf.db')}"
)

DEV_MODE = os.environ.get("IMAGESHELF_DEV", "1").strip().lower() not in {"0", "false", "no"}
HOST = os.environ.get("IMAGESHELF_HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3001"))

# --- Analysis providers ---
HF_TOKEN = os.environ.get("HF_TOKEN") or os.environ.get("HUGGINGFACE_TOKEN") or ""
HF_INFERENCE_URL = os.environ.get(
    "IMAGESHELF_HF_INFERENCE_URL", "https://api-inference.huggingface.co/models"
)
QWEN_MODEL = "Qwen/Qwen2-VL-2B-Instruct"
QWEN_TIMEOUT = 18
CAPTION_MODELS = [
    ("Salesforce/blip2-opt-2.7b", 15),
    ("Salesforce/blip-image-captioning-large", 15),
]

# --- Logging ---
LOG_LEVEL = os.environ.get("IMAGESHELF_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def configure_logging():
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
