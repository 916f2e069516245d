from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query

from chorus import __version__
from chorus.cli import base_parser
from chorus.core.config.loader import load_app_config
from chorus.core.config.schema import AppConfig
from chorus.core.orchestrator.engine import Orchestrator
from chorus.core.orchestrator.factory import build_orchestrator
from chorus.core.telemetry.tracing import recent_traces


def create_app(
    config_path: str | None = None,
    *,
    cfg: AppConfig | None = None,
    orchestrator: Orchestrator | None = None,
) -> FastAPI:
    """Read-mostly observability surface over a running orchestrator."""
    cfg = cfg or load_app_config(instance_path=config_path)
    orch = orchestrator or build_orchestrator(cfg)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await orch.aclose()

    app = FastAPI(title="Chorus Admin API", version=__version__, lifespan=lifespan)
    app.state.orchestrator = orch

    def _require_admin_token(x_admin_token: Annotated[str | None, Header()] = None) -> None:
        expected = os.getenv(cfg.admin.token_env, "").strip()
        if not expected:
            raise HTTPException(status_code=403, detail="admin_token_not_configured")
        if x_admin_token != expected:
            raise HTTPException(status_code=401, detail="invalid_admin_token")

    @app.get("/health")
    def health() -> dict:
        st = orch.status()
        return {
            "status": "ok" if not st["demo_only"] else "degraded",
            "providers": st["providers"],
            "available": st["available"],
            "version": __version__,
        }

    @app.get("/healthz")
    def healthz() -> dict:
        return health()

    @app.get("/status")
    def status() -> dict:
        return orch.status()

    @app.get("/providers")
    def providers() -> dict:
        return {"items": orch.health_status()}

    @app.get("/metrics")
    def metrics() -> dict:
        return orch.metrics_snapshot()

    @app.get("/traces")
    def traces(
        request_id: str | None = Query(default=None),
        limit: int = Query(default=50, ge=1, le=500),
    ) -> dict:
        return {"items": recent_traces(request_id=request_id, limit=limit)}

    @app.post("/admin/breakers/reset")
    def reset_breakers(_=Depends(_require_admin_token)) -> dict:
        orch.reset_circuit_breakers()
        return {"items": orch.health_status()}

    @app.post("/admin/cache/clear")
    async def clear_cache(_=Depends(_require_admin_token)) -> dict:
        await orch.clear_cache()
        return {"cleared": True}

    return app


def main() -> int:
    parser = base_parser("chorus-api", "Chorus observability API")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    args = parser.parse_args()

    cfg = load_app_config(instance_path=args.config)
    api = create_app(cfg=cfg)
    uvicorn.run(api, host=args.host or cfg.admin.host, port=args.port or cfg.admin.port, log_level="info")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
