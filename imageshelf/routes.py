import logging
import os
import shutil
import tempfile
from typing import Any, List, Optional

from fastapi import UploadFile, File, Form, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Import app components from the imageshelf package
from . import app, config, get_store, get_analyzer
from .analysis import AnalysisAdapter, AnalysisImage, SOURCE_FALLBACK, complete_analysis, generate_combined_analysis
from .errors import StorageError, ValidationError
from .search import search
from .store import ImageRecord, ImageStore
from .utils import (
    generate_image_id,
    generate_storage_filename,
    parse_tags_field,
    save_stream,
    utc_timestamp,
)

logger = logging.getLogger(__name__)

# --- Pydantic Models ---
class UpdateTagsRequest(BaseModel):
    # Anything but a list of strings is taken as an empty tag list.
    tags: Any = None

    def tag_list(self) -> List[str]:
        if not isinstance(self.tags, list):
            return []
        return [t for t in self.tags if isinstance(t, str)]

# --- API Endpoints ---

@app.get("/api/version")
def api_version():
    return {"name": app.title, "version": app.version, "description": app.description}

@app.post("/api/images", status_code=201)
def api_upload_image(
    image: Optional[UploadFile] = File(None),
    tags: List[str] = Form([]),
    store: ImageStore = Depends(get_store),
):
    """
    Stores one uploaded image with optional tags. A single ``tags`` field is
    read as comma-separated text; repeated ``tags`` fields are taken as a list.
    """
    if image is None or not image.filename:
        raise ValidationError("image field is required")
    if image.content_type and not image.content_type.startswith("image/"):
        raise ValidationError(f"Only image uploads are accepted, got '{image.content_type}'.")

    tag_list = parse_tags_field(tags[0] if len(tags) == 1 else tags)
    filename = generate_storage_filename(image.filename)
    path = store.path_for(filename)

    try:
        save_stream(image.file, path)
        record = ImageRecord(
            id=generate_image_id(),
            filename=filename,
            original_name=image.filename,
            url=f"/uploads/{filename}",
            tags=tag_list,
            created_at=utc_timestamp(),
        )
        store.append(record)
    except (OSError, StorageError) as e:
        logger.error("Upload of '%s' failed: %s", image.filename, e)
        try:
            os.remove(path)
        except OSError:
            pass
        raise StorageError("Upload failed") from e
    finally:
        image.file.close()

    logger.info("Stored '%s' as %s with tags %s", image.filename, record.id, tag_list)
    return JSONResponse(record.to_dict(), status_code=201)

@app.get("/api/images")
def api_get_images(
    q: Optional[str] = Query(None),
    tags: Optional[str] = Query(None),
    mode: Optional[str] = Query(None),
    store: ImageStore = Depends(get_store),
):
    results = search(store.all(), keyword=q, tags=tags, mode=mode)
    return {"count": len(results), "images": [record.to_dict() for record in results]}

@app.get("/api/images/{image_id}")
def api_get_image(image_id: str, store: ImageStore = Depends(get_store)):
    return store.get(image_id).to_dict()

# Replace-all semantics: the body's list becomes the image's tags verbatim.
@app.put("/api/images/{image_id}/tags")
def api_update_image_tags(image_id: str, request: UpdateTagsRequest, store: ImageStore = Depends(get_store)):
    return store.replace_tags(image_id, request.tag_list()).to_dict()

@app.delete("/api/images/{image_id}")
def api_delete_image(image_id: str, store: ImageStore = Depends(get_store)):
    """Deletes a single image record and its stored file."""
    store.remove(image_id)
    return {"success": True}

@app.get("/api/tags")
def api_get_tags(
    q: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    store: ImageStore = Depends(get_store),
):
    """Every tag ever used, optionally narrowed to those starting with ``q``. Feeds autocomplete."""
    results = list(store.tags)
    if q and q.strip():
        prefix = q.strip().lower()
        results = [t for t in results if t.lower().startswith(prefix)]
    if limit:
        results = results[:limit]
    return results

@app.post("/api/advanced-analyze")
def api_advanced_analyze(
    image: Optional[UploadFile] = File(None),
    basic_tags: str = Form("", alias="basicTags"),
    ocr_text: str = Form("", alias="ocrText"),
    analyzer: AnalysisAdapter = Depends(get_analyzer),
):
    """
    Describes an image through the provider chain. The upload is written to a
    temporary file for the duration of the request and removed afterwards.
    """
    if image is None or not image.filename:
        raise ValidationError("Image file is required")

    hint_tags = [t.strip() for t in basic_tags.split(',') if t.strip()]
    suffix = os.path.splitext(image.filename)[1]
    temp_path = None
    try:
        with tempfile.NamedTemporaryFile(dir=config.TMP_DIR, prefix="analyze-", suffix=suffix, delete=False) as temp_file:
            temp_path = temp_file.name
            shutil.copyfileobj(image.file, temp_file)

        analysis = analyzer.analyze(AnalysisImage(
            path=temp_path,
            original_name=image.filename,
            mimetype=image.content_type or "image/jpeg",
            hint_tags=hint_tags,
            ocr_text=ocr_text.strip(),
        ))
    except OSError as e:
        logger.error("Could not stage '%s' for analysis: %s", image.filename, e)
        analysis = complete_analysis(generate_combined_analysis("unknown.jpg", hint_tags, source=SOURCE_FALLBACK))
    finally:
        image.file.close()
        if temp_path:
            try:
                os.unlink(temp_path)
            except OSError:
                logger.debug("Temporary file %s was already gone.", temp_path)

    return {"analysis": analysis, "source": analysis["source"]}
