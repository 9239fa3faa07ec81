# main.py
import json
import os
import shutil
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field

from data_alchemist import config
from data_alchemist.backend import DataManager
from data_alchemist.exceptions import CUSTOM_ERRORS, FileReadingError, NoDataLoadedError
from data_alchemist.logger import get_logger

logger = get_logger("api")

app = FastAPI(title="Data Alchemist")

# Enable CORS for frontend communication
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# File to store the current file paths
CURRENT_FILES_NAME = "current_files.json"

# Global DataManager instance to persist data across requests
global_data_manager: Optional[DataManager] = None


class RuleRequest(BaseModel):
    type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    businessLogic: Optional[str] = None
    name: Optional[str] = None


class NaturalLanguageRequest(BaseModel):
    input: str = Field(min_length=1)


class FixRequest(BaseModel):
    entity_id: str = Field(min_length=1)
    error: str = Field(min_length=1)


class PrioritiesRequest(BaseModel):
    priorities: Dict[str, float]


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


def _register_error_handler(exc_class, status_code: int):
    async def handler(request: Request, exc: Exception):
        logger.warning("%s %s -> %d: %s", request.method, request.url.path, status_code, exc)
        return _error(status_code, str(exc))

    app.add_exception_handler(exc_class, handler)


for _exc_class, _status_code in CUSTOM_ERRORS.items():
    _register_error_handler(_exc_class, _status_code)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error in %s %s", request.method, request.url.path)
    return _error(500, str(exc))


def _current_files_path() -> str:
    return os.path.join(str(config.UPLOAD_DIR), CURRENT_FILES_NAME)


def get_or_create_data_manager() -> Optional[DataManager]:
    """Get the global data manager, reloading the last uploaded files if needed"""
    global global_data_manager

    if global_data_manager is not None:
        return global_data_manager

    path = _current_files_path()
    if os.path.exists(path):
        with open(path) as f:
            file_paths = json.load(f)
        if all(os.path.exists(p) for p in file_paths.values()):
            logger.info("Reloading data from stored files: %s", file_paths)
            global_data_manager = DataManager()
            global_data_manager.load_files(
                file_paths["clients"],
                file_paths["workers"],
                file_paths["tasks"]
            )
    return global_data_manager


def require_data_manager() -> DataManager:
    dm = get_or_create_data_manager()
    if dm is None or not dm.has_data:
        raise NoDataLoadedError("No data loaded. Please upload files first.")
    return dm


def save_current_files(clients_path, workers_path, tasks_path):
    """Save the current file paths for reloading after server restart"""
    file_paths = {
        "clients": clients_path,
        "workers": workers_path,
        "tasks": tasks_path
    }
    with open(_current_files_path(), "w") as f:
        json.dump(file_paths, f)


def save_upload_file(upload_file: UploadFile) -> str:
    os.makedirs(str(config.UPLOAD_DIR), exist_ok=True)
    filename = os.path.basename(upload_file.filename or "upload.csv")
    file_path = os.path.join(str(config.UPLOAD_DIR), f"{uuid.uuid4()}_{filename}")
    with open(file_path, "wb") as buffer:
        shutil.copyfileobj(upload_file.file, buffer)
    return file_path


def _validation_payload(dm: DataManager) -> Dict[str, Any]:
    return {"status": "success", **dm.validation_summary()}


@app.get("/health")
async def health():
    return {"status": "ok"}


# Endpoint to accept files from frontend
@app.post("/upload")
async def upload_files(
    clients: UploadFile = File(...),
    workers: UploadFile = File(...),
    tasks: UploadFile = File(...)
):
    global global_data_manager

    clients_path = save_upload_file(clients)
    workers_path = save_upload_file(workers)
    tasks_path = save_upload_file(tasks)
    logger.info("Files saved: %s, %s, %s", clients_path, workers_path, tasks_path)

    dm = DataManager()
    dm.load_files(clients_path, workers_path, tasks_path)
    if not dm.has_data:
        raise FileReadingError("Failed to load data from files")

    global_data_manager = dm
    save_current_files(clients_path, workers_path, tasks_path)

    return {**_validation_payload(dm), "data": dm.data()}


@app.get("/validate")
async def validate():
    return _validation_payload(require_data_manager())


@app.get("/rules")
async def list_rules():
    dm = require_data_manager()
    return {"status": "success", **dm.rule_report().to_dict()}


@app.post("/rules")
async def add_rule(request: RuleRequest):
    dm = require_data_manager()
    rule = {k: v for k, v in request.model_dump().items() if v is not None}
    stamped = dm.add_rule(rule)
    return {"status": "success", "rule": stamped, **dm.rule_report().to_dict()}


@app.delete("/rules/{index}")
async def delete_rule(index: int):
    dm = require_data_manager()
    removed = dm.delete_rule(index)
    return {"status": "success", "removed": removed, **dm.rule_report().to_dict()}


# AI Rule Generation from Natural Language
@app.post("/ai_generate_rule")
async def ai_generate_rule(request: NaturalLanguageRequest):
    dm = require_data_manager()
    return {"status": "success", "rule": dm.generate_rule_from_natural_language(request.input)}


# Natural language search
@app.post("/nl_search")
async def nl_search(query: str = Form(...)):
    dm = require_data_manager()
    return {"status": "success", "results": dm.natural_language_search(query)}


# Natural language modify
@app.post("/nl_modify")
async def nl_modify(command: str = Form(...)):
    dm = require_data_manager()
    result = dm.natural_language_modify(command)
    return {"status": "success", **result, "data": dm.data(), "errors": dm.validate_all()}


@app.post("/fix_validation")
async def fix_validation(request: FixRequest):
    dm = require_data_manager()
    result = dm.fix_validation_error(request.entity_id, request.error)
    return {"status": "success", **result, "data": dm.data(), "errors": dm.validate_all()}


# Apply deterministic corrections for every known error
@app.post("/apply_corrections")
async def apply_corrections():
    dm = require_data_manager()
    result = dm.apply_default_fixes()
    return {
        "status": "success",
        "message": f"Applied fixes. Errors reduced from {result['errors_before']} to {result['errors_after']}",
        **result,
        "data": dm.data(),
        "errors": dm.validate_all(),
    }


@app.post("/priorities")
async def set_priorities(request: PrioritiesRequest):
    dm = require_data_manager()
    dm.set_priorities(request.priorities)
    return {"status": "success", "priorities": dm.priorities}


# Export processed data
@app.post("/export")
async def export_data():
    dm = require_data_manager()
    output_dir = dm.export_all(config.EXPORT_DIR)

    exported_files = []
    for name in ("clients.csv", "workers.csv", "tasks.csv", "rules.json", "priorities.json"):
        path = os.path.join(output_dir, name)
        if os.path.exists(path):
            exported_files.append({"name": name, "path": path, "type": name.rsplit(".", 1)[-1]})

    return {
        "status": "success",
        "message": f"Data exported successfully to {output_dir}",
        "export_directory": output_dir,
        "files": exported_files,
        "summary": {
            "total_files": len(exported_files),
            "clients_count": len(dm.clients),
            "workers_count": len(dm.workers),
            "tasks_count": len(dm.tasks),
            "rules_count": len(dm.rules)
        }
    }


# Download individual exported files
@app.get("/download/{filename}")
async def download_file(filename: str):
    file_path = os.path.join(str(config.EXPORT_DIR), os.path.basename(filename))
    if not os.path.exists(file_path):
        return _error(404, "File not found")

    return FileResponse(
        path=file_path,
        media_type="application/octet-stream",
        filename=os.path.basename(filename)
    )
