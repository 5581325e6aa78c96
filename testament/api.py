"""
api.py - Read-only HTTP API over the projected replica

Endpoints (JSON, {"success": bool, "data": ..., "count"?: n} envelopes):
    GET /health
    GET /wills/{testator}
    GET /wills/beneficiary/{beneficiary}
    GET /will/{will_id}
    GET /beneficiaries/{beneficiary}
    GET /vaults/{will_id}
    GET /documents/{will_id}
    GET /documents/{will_id}/{content_hash}
    GET /stats

Address inputs must be 0x + 40 hex digits (400 otherwise) and are
lower-cased before lookup. Unknown wills and documents answer 404.
Unexpected failures answer 500; the detail is only included when the
application runs in development.
"""

from __future__ import annotations
from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .config import Settings, get_settings
from .core import is_valid_identity, is_valid_content_hash
from .projection.engine import ProjectionEngine
from .projection.store import ReplicaStore

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Client error answered with the given status and message."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class HealthResponse(BaseModel):
    success: bool = True
    message: str = "Will Management API is running"
    timestamp: str
    checkpoint: Optional[Dict[str, int]] = None
    halted: bool = False


def _will_id(value: str, label: str = "will ID") -> str:
    if not is_valid_identity(value):
        raise ApiError(status.HTTP_400_BAD_REQUEST, f"Invalid {label} format (should be an address)")
    return value.lower()


def create_app(
    store: ReplicaStore,
    settings: Optional[Settings] = None,
    engine: Optional[ProjectionEngine] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        store: Replica store the routes read from (never written)
        settings: Defaults to get_settings()
        engine: Optional running engine, reported by /health
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Testament Will API",
        description="Read-only queries over the projected will replica",
        version=__version__,
    )
    app.state.store = store
    app.state.settings = settings
    app.state.engine = engine

    origins = settings.allowed_origins_list
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("%s %s", request.method, request.url.path)
        return await call_next(request)

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.message},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("API error on %s", request.url.path)
        content: Dict[str, Any] = {"success": False, "error": "Internal server error"}
        if settings.is_development:
            content["details"] = str(exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    def health():
        """Service health check."""
        checkpoint = store.checkpoint()
        return HealthResponse(
            timestamp=datetime.now(timezone.utc).isoformat(),
            checkpoint=(
                {"blockNumber": checkpoint[0], "logIndex": checkpoint[1]} if checkpoint else None
            ),
            halted=bool(engine is not None and engine.halted),
        )

    @app.get("/wills/beneficiary/{beneficiary}")
    def wills_by_beneficiary(beneficiary: str):
        """Wills listing the address as beneficiary, with its share."""
        wills = store.get_wills_by_beneficiary(_will_id(beneficiary, "beneficiary address"))
        return {"success": True, "data": wills, "count": len(wills)}

    @app.get("/wills/{testator}")
    def wills_by_testator(testator: str):
        wills = store.get_wills_by_testator(_will_id(testator, "testator address"))
        return {"success": True, "data": wills, "count": len(wills)}

    @app.get("/will/{will_id}")
    def will_details(will_id: str):
        """Full will: terms, beneficiaries, vault balances and documents."""
        details = store.get_will_details(_will_id(will_id))
        if details is None:
            raise ApiError(status.HTTP_404_NOT_FOUND, "Will not found")
        return {"success": True, "data": details}

    @app.get("/beneficiaries/{beneficiary}")
    def beneficiary_wills(beneficiary: str):
        entries = store.get_beneficiary_wills(_will_id(beneficiary, "beneficiary address"))
        return {"success": True, "data": entries, "count": len(entries)}

    @app.get("/vaults/{will_id}")
    def vaults(will_id: str):
        will_id = _will_id(will_id)
        if not store.will_exists(will_id):
            raise ApiError(status.HTTP_404_NOT_FOUND, "Will not found")
        rows = store.get_vaults(will_id)
        return {
            "success": True,
            "data": {
                "willId": will_id,
                "vaults": {row["vaultType"]: row["balance"] for row in rows},
                "rawData": rows,
            },
        }

    @app.get("/documents/{will_id}")
    def documents(will_id: str):
        will_id = _will_id(will_id)
        if not store.will_exists(will_id):
            raise ApiError(status.HTTP_404_NOT_FOUND, "Will not found")
        docs = store.get_documents(will_id)
        return {
            "success": True,
            "data": {"willId": will_id, "documents": docs, "count": len(docs)},
        }

    @app.get("/documents/{will_id}/{content_hash}")
    def document(will_id: str, content_hash: str):
        will_id = _will_id(will_id)
        if not is_valid_content_hash(content_hash):
            raise ApiError(status.HTTP_400_BAD_REQUEST, "Invalid IPFS hash format")
        doc = store.get_document(will_id, content_hash)
        if doc is None:
            raise ApiError(status.HTTP_404_NOT_FOUND, "Document not found")
        return {"success": True, "data": doc}

    @app.get("/stats")
    def stats():
        return {"success": True, "data": store.get_stats()}

    return app
