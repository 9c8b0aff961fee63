import os
import shutil
import time
import uuid
from datetime import datetime, timezone
from typing import IO, Any, Dict, List, Optional

from PIL import Image as PILImage, UnidentifiedImageError

# --- Helper Functions ---

def parse_tags_field(value: Any) -> List[str]:
    """
    Normalizes the upload form's tags field. A list is kept as given, a
    string is split on commas with blank segments dropped. Duplicates are
    kept: "a, b ,a" gives ["a", "b", "a"]. Any other shape gives [].
    """
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value:
        return [t.strip() for t in value.split(',') if t.strip()]
    return []

def generate_image_id() -> str:
    return uuid.uuid4().hex

def generate_storage_filename(original_name: Optional[str]) -> str:
    """
    Builds a collision-resistant storage name from the upload time and a random
    suffix, keeping the original extension: '1718000000000-3f9a1c2b.png'.
    """
    extension = os.path.splitext(original_name or "")[1]
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{extension}"

def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

def save_stream(source: IO[bytes], path: str) -> int:
    """Copies a file-like object to ``path`` and returns the number of bytes written."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    source.seek(0)
    with open(path, "wb") as buffer:
        shutil.copyfileobj(source, buffer)
        return buffer.tell()

def read_image_properties(path: str) -> Dict[str, Any]:
    """Returns the file size and, when Pillow can decode it, the pixel size and format."""
    properties: Dict[str, Any] = {"size_bytes": os.path.getsize(path)}
    try:
        with PILImage.open(path) as img:
            properties["width"], properties["height"] = img.size
            properties["format"] = img.format
    except (UnidentifiedImageError, OSError):
        pass
    return properties
