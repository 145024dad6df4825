"""
REST surface for the back-office UI.

Handlers are thin: each one calls a single DocumentService operation and
returns the result. Lifecycle errors are translated by scanflow_error_handler.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Header, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse

from scanflow.api.schemas import (
    ActionResponse,
    DocumentListResponse,
    DocumentUpdateRequest,
    ErrorResponse,
    HistoryResponse,
    SweepResponse,
)
from scanflow.core.errors import (
    ScanflowError,
    NotFoundError,
    ValidationError,
    ConflictError,
    DependencyUnavailableError,
    StorageError,
)
from scanflow.models.document import Document, DocumentStatus
from scanflow.services.document_service import ActionResult, DocumentService

logger = logging.getLogger(__name__)
api_router = APIRouter()

# Most specific class first
ERROR_STATUS_CODES = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_409_CONFLICT),
    (DependencyUnavailableError, status.HTTP_502_BAD_GATEWAY),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]

ERROR_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Unknown document"},
    409: {"model": ErrorResponse, "description": "Document deleted or mid-transition"},
    500: {"model": ErrorResponse, "description": "File move or write failed"},
}


async def scanflow_error_handler(request: Request, exc: ScanflowError) -> JSONResponse:
    """Translate lifecycle errors into structured JSON responses."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_class, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            status_code = code
            break

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")

    return JSONResponse(status_code=status_code, content=exc.to_dict())


def get_document_service(request: Request) -> DocumentService:
    return request.app.state.document_service


def get_actor(request: Request, x_user: Optional[str] = Header(None)) -> str:
    """Acting user from X-User, falling back to the configured default actor."""
    return x_user or request.app.state.settings.DEFAULT_ACTOR


def to_response(result: ActionResult) -> ActionResponse:
    return ActionResponse(message=result.message, changed=result.changed, document=result.document)


# ============================================================
# Queries
# ============================================================

@api_router.get("/documents", response_model=List[Document], summary="List documents")
def list_documents(
    status_filter: Optional[DocumentStatus] = Query(None, alias="status"),
    service: DocumentService = Depends(get_document_service),
):
    """Most recent first, optionally filtered by status."""
    return service.list_documents(status_filter)


@api_router.get(
    "/documents/next",
    response_model=Document,
    responses={404: ERROR_RESPONSES[404]},
    summary="Oldest document in a queue",
)
def next_document(
    status_filter: Optional[DocumentStatus] = Query(None, alias="status"),
    service: DocumentService = Depends(get_document_service),
):
    """
    Oldest document with the given status; without a status, the oldest
    document that is neither processed nor deleted.
    """
    return service.next_document(status_filter)


@api_router.get("/documents/{document_id}", response_model=Document, responses={404: ERROR_RESPONSES[404]})
def get_document(document_id: str, service: DocumentService = Depends(get_document_service)):
    return service.get_document(document_id)


@api_router.get("/logs/{document_id}", response_model=HistoryResponse, responses={404: ERROR_RESPONSES[404]})
def get_document_logs(document_id: str, service: DocumentService = Depends(get_document_service)):
    """History of a document: creation, classifications, corrections and moves."""
    return HistoryResponse(id=document_id, logs=service.get_history(document_id))


# ============================================================
# Mutations
# ============================================================

@api_router.put(
    "/documents/{document_id}",
    response_model=ActionResponse,
    responses={**ERROR_RESPONSES, 400: {"model": ErrorResponse}},
    summary="Correct document metadata",
)
async def update_document(
    document_id: str,
    payload: DocumentUpdateRequest,
    x_user: Optional[str] = Header(None),
    service: DocumentService = Depends(get_document_service),
):
    """
    Partial update.

    - **metadata**: merged into the existing metadata
    - **confidence**, **mode**: replaced
    - **status**: moves the file to the matching folder

    Requires the X-User header.
    """
    result = await service.update(document_id, payload.model_dump(exclude_none=True), x_user)
    return to_response(result)


@api_router.post(
    "/upload",
    response_model=Document,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Upload a PDF into the inbox",
)
async def upload_document(
    pdf: UploadFile = File(..., description="PDF document"),
    actor: str = Depends(get_actor),
    service: DocumentService = Depends(get_document_service),
):
    content = await pdf.read()
    return await service.upload(pdf.filename, content, actor)


@api_router.post(
    "/documents/{document_id}/classify",
    response_model=ActionResponse,
    responses={**ERROR_RESPONSES, 502: {"model": ErrorResponse, "description": "Classifier unavailable"}},
)
async def classify_document(
    document_id: str,
    actor: str = Depends(get_actor),
    service: DocumentService = Depends(get_document_service),
):
    return to_response(await service.classify(document_id, actor))


@api_router.post(
    "/documents/{document_id}/reclassify",
    response_model=ActionResponse,
    responses={**ERROR_RESPONSES, 502: {"model": ErrorResponse, "description": "Classifier unavailable"}},
)
async def reclassify_document(
    document_id: str,
    actor: str = Depends(get_actor),
    service: DocumentService = Depends(get_document_service),
):
    return to_response(await service.reclassify(document_id, actor))


@api_router.post("/documents/{document_id}/process", response_model=ActionResponse, responses=ERROR_RESPONSES)
async def process_document(
    document_id: str,
    actor: str = Depends(get_actor),
    service: DocumentService = Depends(get_document_service),
):
    """Force the document to processed, regardless of its confidence."""
    return to_response(await service.process(document_id, actor))


@api_router.post("/documents/{document_id}/hold", response_model=ActionResponse, responses=ERROR_RESPONSES)
async def hold_document(
    document_id: str,
    actor: str = Depends(get_actor),
    service: DocumentService = Depends(get_document_service),
):
    return to_response(await service.hold(document_id, actor))


@api_router.post("/documents/{document_id}/delete", response_model=ActionResponse, responses=ERROR_RESPONSES)
@api_router.delete("/documents/{document_id}", response_model=ActionResponse, responses=ERROR_RESPONSES)
async def delete_document(
    document_id: str,
    actor: str = Depends(get_actor),
    service: DocumentService = Depends(get_document_service),
):
    """Soft delete; the file is purged later by the retention sweep."""
    return to_response(await service.delete(document_id, actor))


# ============================================================
# Maintenance
# ============================================================

@api_router.get("/sync-now", response_model=DocumentListResponse, summary="Scan the inbox, then list documents")
async def sync_now(
    status_filter: Optional[DocumentStatus] = Query(None, alias="status"),
    service: DocumentService = Depends(get_document_service),
):
    documents = await service.sync_now(status_filter)
    return DocumentListResponse(total=len(documents), documents=documents)


@api_router.post("/maintenance/purge", response_model=SweepResponse, summary="Run a purge pass now")
async def purge_documents(
    immediate: bool = Query(False, description="Purge every deleted document regardless of the retention window"),
    service: DocumentService = Depends(get_document_service),
):
    report = await service.purge(immediate=immediate)
    return SweepResponse(**report.to_dict())
