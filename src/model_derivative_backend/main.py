from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .configuration import load_settings
from .exceptions import AllocationError, ManifestError, UpstreamError
from .model_manager import ModelManager, build_model_manager
from .models import AccessToken, ModelStatus, ModelSummary, ParsedManifestSummary, PropertiesDownload

logger = logging.getLogger(__name__)

MODELS_ENDPOINT = "/api/models"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    logging.basicConfig(
        level=str(settings.log_level).upper(),
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    async with httpx.AsyncClient(timeout=settings.aps.timeout_seconds) as http_client:
        app.state.model_manager = build_model_manager(settings, http_client)
        logger.info(f"Model derivative backend started for bucket {settings.aps.bucket}")
        yield


app = FastAPI(title="Model Derivative API", version="0.1.0", lifespan=lifespan)

allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ManifestError)
async def manifest_error_handler(request: Request, exc: ManifestError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(AllocationError)
async def allocation_error_handler(request: Request, exc: AllocationError) -> JSONResponse:
    logger.error(f"Result directory allocation failed: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    logger.error(f"Upstream call failed: {exc} ({exc.body})")
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc), "upstream_status": exc.status_code},
    )


def get_model_manager(request: Request) -> ModelManager:
    return request.app.state.model_manager


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/auth/token", response_model=AccessToken)
async def get_public_token(manager: ModelManager = Depends(get_model_manager)) -> AccessToken:
    return await manager.get_public_token()


@app.get(MODELS_ENDPOINT, response_model=list[ModelSummary])
async def list_models(manager: ModelManager = Depends(get_model_manager)) -> list[ModelSummary]:
    return await manager.list_models()


@app.post(MODELS_ENDPOINT, response_model=ModelSummary)
async def create_model(
    model_file: Optional[UploadFile] = File(None, alias="model-file"),
    zip_entrypoint: Optional[str] = Form(None, alias="model-zip-entrypoint"),
    manager: ModelManager = Depends(get_model_manager),
) -> ModelSummary:
    if model_file is None or not model_file.filename:
        raise HTTPException(status_code=400, detail='The required field ("model-file") is missing.')

    data = await model_file.read()
    await model_file.close()
    return await manager.create_model(model_file.filename, data, zip_entrypoint or None)


@app.get(f"{MODELS_ENDPOINT}/{{urn}}/status", response_model=ModelStatus, response_model_exclude_none=True)
async def model_status(urn: str, manager: ModelManager = Depends(get_model_manager)) -> ModelStatus:
    return await manager.get_status(urn)


@app.get(f"{MODELS_ENDPOINT}/{{urn}}/properties", response_model=ParsedManifestSummary)
async def model_properties(urn: str, manager: ModelManager = Depends(get_model_manager)) -> ParsedManifestSummary:
    return await manager.get_properties(urn)


@app.post(f"{MODELS_ENDPOINT}/{{urn}}/properties/download", response_model=PropertiesDownload)
async def download_model_properties(urn: str, manager: ModelManager = Depends(get_model_manager)) -> PropertiesDownload:
    return await manager.download_properties(urn)
