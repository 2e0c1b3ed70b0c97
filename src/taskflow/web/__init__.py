"""Taskflow JSON API: FastAPI app factory."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import GraphError
from ..graph import TaskGraph

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "unauthorized": 401,
    "not_found": 404,
    "self_reference": 400,
    "circular_reference": 400,
    "circular_dependency": 400,
    "depth_exceeded": 400,
    "duplicate_dependency": 409,
    "conflict": 409,
    "graph_corruption": 500,
}


async def _graph_error(request: Request, exc: GraphError) -> JSONResponse:
    status = ERROR_STATUS.get(exc.kind, 400)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc)
    return JSONResponse(exc.to_dict(), status_code=status)


async def _value_error(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse({"error": "invalid_request", "message": str(exc)}, status_code=400)


def create_app(graph: TaskGraph | None = None) -> FastAPI:
    app = FastAPI(title="taskflow", version=__version__)

    app.state.graph = graph if graph is not None else TaskGraph.from_workdir()

    app.add_exception_handler(GraphError, _graph_error)
    app.add_exception_handler(ValueError, _value_error)

    from .routes import router

    app.include_router(router)

    return app
