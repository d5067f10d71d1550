from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .datasource_config import (
    DataSourceConfig,
    is_configured,
    redacted,
    reset_key,
    validate_for_save_and_test,
)
from .db import engine, get_session, init_db
from .errors import MissingCredentialError
from .logging_utils import setup_logging
from .metrics.billing import build_catalog
from .metrics.catalog import MetricCatalog
from .queries import Query, default_query
from .services.executor import (
    HEALTH_ERROR,
    ClientFactory,
    HealthCheckResult,
    QueryEngine,
    StripeDataSource,
)
from .store import load_config, load_secrets, save_config
from .stripe.client import StripeClient

logger = logging.getLogger(__name__)

catalog = build_catalog(settings.enabled_metrics)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)
    await init_db()
    logger.info("%s ready with %d metrics", settings.app_name, len(catalog))
    try:
        yield
    finally:
        await engine.dispose()


app = FastAPI(title=settings.app_name, lifespan=lifespan)


class QueryRequest(BaseModel):
    queries: List[Query] = Field(default_factory=list)


def get_catalog() -> MetricCatalog:
    return catalog


def get_client_factory() -> ClientFactory:
    return StripeClient


def _merge_plain_settings(
    payload: Optional[DataSourceConfig], stored: DataSourceConfig
) -> DataSourceConfig:
    """Keep the stored jsonData unless the payload carries its own."""
    if payload is None:
        return stored
    if "json_data" in payload.model_fields_set:
        return payload
    return payload.model_copy(update={"json_data": dict(stored.json_data)})


def _entry_payload(entry) -> Dict[str, Any]:
    payload = asdict(entry)
    payload["kind"] = entry.kind.value
    return payload


@app.get("/api/metrics")
async def list_metrics(catalog: MetricCatalog = Depends(get_catalog)):
    return [_entry_payload(entry) for entry in catalog.list_entries()]


@app.get("/api/metrics/{kind}")
async def read_metric(kind: str, catalog: MetricCatalog = Depends(get_catalog)):
    try:
        entry = catalog.resolve(kind)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _entry_payload(entry)


@app.get("/api/queries/default")
async def read_default_query():
    return default_query().to_payload()


@app.post("/api/query")
async def run_queries(
    request: QueryRequest,
    session: AsyncSession = Depends(get_session),
    catalog: MetricCatalog = Depends(get_catalog),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    results: Dict[str, Any] = {}
    by_datasource: Dict[str, List[Query]] = {}
    for query in request.queries:
        uid = query.datasource_uid or settings.default_datasource_uid
        by_datasource.setdefault(uid, []).append(query)

    for uid, queries in by_datasource.items():
        secrets = await load_secrets(session, uid)
        query_engine = QueryEngine(StripeDataSource(catalog, secrets, client_factory))
        for ref_id, response in (await query_engine.run(queries)).items():
            results[ref_id] = response.to_dict()
    return {"results": results}


@app.get("/api/datasources/{uid}")
async def read_datasource(uid: str, session: AsyncSession = Depends(get_session)):
    return redacted(await load_config(session, uid))


@app.put("/api/datasources/{uid}")
async def update_datasource(
    uid: str,
    payload: DataSourceConfig = Body(...),
    session: AsyncSession = Depends(get_session),
):
    stored = await load_config(session, uid)
    saved = await save_config(session, uid, _merge_plain_settings(payload, stored))
    return redacted(saved)


@app.post("/api/datasources/{uid}/reset-key")
async def reset_datasource_key(uid: str, session: AsyncSession = Depends(get_session)):
    current = await load_config(session, uid)
    saved = await save_config(session, uid, reset_key(current))
    return redacted(saved)


@app.post("/api/datasources/{uid}/health")
async def save_and_test(
    uid: str,
    payload: Optional[DataSourceConfig] = Body(None),
    session: AsyncSession = Depends(get_session),
    catalog: MetricCatalog = Depends(get_catalog),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Save the payload, then verify the stored key against Stripe.

    The presence flag comes from the store, not the payload, so a client
    cannot claim a key that was never saved. The reset pair is honoured.
    """
    stored = await load_config(session, uid)
    payload = _merge_plain_settings(payload, stored)
    reset_requested = payload.secure_json_data.api_key == "" and not is_configured(payload)
    fields = payload.secure_json_fields if reset_requested else stored.secure_json_fields
    candidate = payload.model_copy(update={"secure_json_fields": fields})
    try:
        validate_for_save_and_test(candidate)
    except MissingCredentialError as exc:
        logger.info("Save & test for %s rejected: %s", uid, exc)
        result = HealthCheckResult(HEALTH_ERROR, exc.message)
        return JSONResponse(status_code=400, content=result.to_dict())

    await save_config(session, uid, candidate)
    datasource = StripeDataSource(catalog, await load_secrets(session, uid), client_factory)
    result = await datasource.check_health()
    return JSONResponse(status_code=200 if result.ok else 400, content=result.to_dict())
