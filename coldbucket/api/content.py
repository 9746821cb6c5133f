"""Content retrieval endpoints."""

import mimetypes

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.status import HTTP_202_ACCEPTED, HTTP_404_NOT_FOUND

from coldbucket.core.config import settings
from coldbucket.core.events import AppState
from coldbucket.retrieval.coalescer import RetrievalCoalescer, RetrievalStatus

router = APIRouter(tags=["content"])


def get_services(request: Request) -> AppState:
    """Shared application objects created at startup."""
    return request.app.state.services


def get_coalescer(services: AppState = Depends(get_services)) -> RetrievalCoalescer:
    return services.coalescer


@router.get("/content/{path:path}")
@router.get("/ipfs/{path:path}", include_in_schema=False)
async def get_content(
    path: str,
    coalescer: RetrievalCoalescer = Depends(get_coalescer),
) -> Response:
    """
    Serve a file by logical path.

    Returns the bytes when the content store has them, or the child names
    for a directory whose block is held locally. When the owning
    bucket has been evicted, a fetch is started (or joined) and the client
    is asked to retry later with ``202 Accepted``.
    """
    result = await coalescer.retrieve(path)

    if result.status is RetrievalStatus.FOUND:
        media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        return Response(content=result.content, media_type=media_type)

    if result.status is RetrievalStatus.DIRECTORY:
        return JSONResponse(
            content={"path": path.strip("/"), "entries": result.children}
        )

    if result.status is RetrievalStatus.PENDING:
        return JSONResponse(
            status_code=HTTP_202_ACCEPTED,
            content={
                "status": "fetching",
                "message": "Content is being restored from archival storage, "
                "retry later",
                "bucket_id": result.bucket_id,
            },
            headers={"Retry-After": str(settings.RETRY_AFTER_SECONDS)},
        )

    raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail=f"Unknown path: {path}")
