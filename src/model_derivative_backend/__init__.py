"""
Model Derivative Backend - REST API for CAD translation jobs

This package provides a FastAPI-based web service that orchestrates the
translation of uploaded CAD files through the Autodesk Platform Services
(APS) Model Derivative service. It enables:

- CAD file uploads into an OSS bucket
- Translation job submission (SVF2, 2D and 3D views)
- Translation status queries with flattened diagnostic messages
- Manifest parsing into property database and model data derivatives
- Signed derivative downloads into per-model result directories

The backend is a thin orchestration layer: translation itself runs on the
remote service, and status is polled by the client through separate requests.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - model_manager: Coordinator for the operations exposed by the API
    - derivative_service: Model Derivative client (translate, manifest, downloads)
    - oss_service: Object Storage Service client (buckets, objects, uploads)
    - manifest: Manifest parsing and message aggregation
    - auth: Two-legged OAuth token provider with caching
    - models: Pydantic models for manifests, requests and responses
    - configuration: Config loading and merging logic
    - utils: Identifier encoding and filesystem utilities

Usage:
    Run the API server with:
        uvicorn model_derivative_backend.main:app --reload --host 0.0.0.0 --port 8000

Architecture Principles:
    - The remote service owns job state; nothing is cached except tokens
    - "Not found" is a value, never an exception
    - Async-first API design; no background polling in the server
"""

__version__ = "0.1.0"
