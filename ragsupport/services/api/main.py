"""Knowledge Service - ingestion, semantic search and cached generation."""

from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request

from ragsupport.batch import BatchRequest, BatchResult, BatchTask
from ragsupport.common import get_logger, get_settings, setup_logging
from ragsupport.common.errors import (
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    InvalidInputError,
    PipelineError,
    RAGSupportError,
)
from ragsupport.common.models import BaseResponse, HealthResponse
from ragsupport.generation import PipelineRequest, PipelineResult
from ragsupport.rag import IngestRequest, IngestResult, SearchResponse

from .container import ServiceContainer
from .schemas import (
    BatchRunRequest,
    DeleteResult,
    DocumentIngestRequest,
    GenerateRequest,
    SearchRequest,
    TranslateRequest,
    TranslateResult,
)

SERVICE_VERSION = "1.0.0"

logger = get_logger(__name__)


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        container: Pre-built components; built from settings at startup when omitted

    Returns:
        Application instance
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        settings = get_settings()

        setup_logging(
            level=settings.log_level,
            format=settings.log_format,
            service_name=settings.service_name,
            environment=settings.environment,
        )

        logger.info("starting_service", environment=settings.environment)

        owns_container = container is None
        app.state.container = container or await ServiceContainer.from_settings(settings)
        for task in app.state.container.batch_tasks:
            if task.name not in app.state.batch_tasks:
                register_batch_task(app, task)

        logger.info("service_initialized", batch_tasks=sorted(app.state.batch_tasks))

        yield

        logger.info("shutting_down_service")
        if owns_container:
            await app.state.container.close()

    app = FastAPI(
        title="Knowledge Service",
        description="Document ingestion, semantic search and cached retrieval-augmented generation",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.batch_tasks = {}

    _add_routes(app)
    return app


def register_batch_task(app: FastAPI, task: BatchTask) -> None:
    """Expose a batch task at ``POST /api/v1/batch/{task.name}``."""
    app.state.batch_tasks[task.name] = task
    logger.info("batch_task_registered", task=task.name)


def get_container(request: Request) -> ServiceContainer:
    """Dependency returning the application's components."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return container


def _http_error(error: RAGSupportError) -> HTTPException:
    """Map a domain error to an HTTP error."""
    if isinstance(error, ConflictError):
        return HTTPException(
            status_code=409,
            detail={
                "error": "Duplicate document",
                "message": str(error),
                "existing_document_id": error.existing_id,
            },
        )
    if isinstance(error, InvalidInputError):
        return HTTPException(status_code=400, detail={"error": str(error)})
    if isinstance(error, ConfigurationError):
        return HTTPException(status_code=503, detail={"error": str(error)})
    if isinstance(error, (ExternalServiceError, PipelineError)):
        return HTTPException(
            status_code=502,
            detail={"error": str(error), "retryable": error.retryable},
        )
    return HTTPException(status_code=500, detail={"error": str(error)})


def _add_routes(app: FastAPI) -> None:

    @app.get("/health", response_model=HealthResponse)
    async def health_check(container: ServiceContainer = Depends(get_container)) -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            service=get_settings().service_name,
            version=SERVICE_VERSION,
            checks=container.health_checks(),
        )

    @app.post("/api/v1/documents", response_model=BaseResponse[IngestResult])
    async def ingest_document(
        request: DocumentIngestRequest,
        container: ServiceContainer = Depends(get_container),
    ) -> BaseResponse[IngestResult]:
        """Chunk, embed and index a document."""
        try:
            result = await container.indexer.ingest(IngestRequest(
                title=request.title,
                content=request.content,
                source_url=request.source_url,
                file_type=request.file_type or "text",
                metadata=request.metadata,
                created_by=request.created_by,
            ))
            return BaseResponse.success_response(request.request_id, result)

        except RAGSupportError as e:
            logger.warning("ingest_rejected", title=request.title, error=str(e))
            raise _http_error(e) from e
        except Exception as e:
            logger.error("ingest_failed", title=request.title, error=str(e))
            return BaseResponse.error_response(request.request_id, str(e))

    @app.delete("/api/v1/documents/{document_id}", response_model=BaseResponse[DeleteResult])
    async def delete_document(
        document_id: str,
        container: ServiceContainer = Depends(get_container),
    ) -> BaseResponse[DeleteResult]:
        """Delete a document and its chunks."""
        request_id = uuid4()
        try:
            deleted = await container.indexer.delete_document(document_id)
        except RAGSupportError as e:
            logger.warning("delete_failed", document_id=document_id, error=str(e))
            raise _http_error(e) from e

        if not deleted:
            raise HTTPException(status_code=404, detail=f"Document {document_id} not found")

        return BaseResponse.success_response(
            request_id, DeleteResult(document_id=document_id, deleted=True)
        )

    @app.post("/api/v1/search", response_model=BaseResponse[SearchResponse])
    async def search(
        request: SearchRequest,
        container: ServiceContainer = Depends(get_container),
    ) -> BaseResponse[SearchResponse]:
        """Semantic query over the knowledge base."""
        try:
            result = await container.retriever.search(
                request.query_text,
                threshold=request.threshold,
                count=request.count,
                top_n=request.top_n,
                rerank=request.rerank,
                deduplicate=request.deduplicate,
            )
            return BaseResponse.success_response(request.request_id, result)

        except RAGSupportError as e:
            logger.warning("search_failed", error=str(e))
            raise _http_error(e) from e
        except Exception as e:
            logger.error("search_failed", error=str(e))
            return BaseResponse.error_response(request.request_id, str(e))

    @app.post("/api/v1/generate", response_model=BaseResponse[PipelineResult])
    async def generate(
        request: GenerateRequest,
        container: ServiceContainer = Depends(get_container),
    ) -> BaseResponse[PipelineResult]:
        """Cached retrieval-augmented generation."""
        fields = request.model_dump(exclude={"request_id", "timestamp"}, exclude_none=True)
        try:
            result = await container.pipeline.run(PipelineRequest(**fields))
            return BaseResponse.success_response(request.request_id, result)

        except RAGSupportError as e:
            logger.warning("generate_failed", scope=request.scope, error=str(e))
            raise _http_error(e) from e
        except Exception as e:
            logger.error("generate_failed", scope=request.scope, error=str(e))
            return BaseResponse.error_response(request.request_id, str(e))

    @app.post("/api/v1/translate", response_model=BaseResponse[TranslateResult])
    async def translate(
        request: TranslateRequest,
        container: ServiceContainer = Depends(get_container),
    ) -> BaseResponse[TranslateResult]:
        """Translate a text with a long-lived cache."""
        try:
            translation, cached = await container.translator.translate(
                request.text, request.source_language, request.target_language
            )
            return BaseResponse.success_response(
                request.request_id, TranslateResult(translation=translation, cached=cached)
            )

        except RAGSupportError as e:
            logger.warning("translate_failed", error=str(e))
            raise _http_error(e) from e
        except Exception as e:
            logger.error("translate_failed", error=str(e))
            return BaseResponse.error_response(request.request_id, str(e))

    @app.post("/api/v1/batch/{task_name}", response_model=BaseResponse[BatchResult])
    async def run_batch(
        task_name: str,
        request: BatchRunRequest,
        http_request: Request,
        container: ServiceContainer = Depends(get_container),
    ) -> BaseResponse[BatchResult]:
        """Run one bounded invocation of a registered batch task."""
        task = http_request.app.state.batch_tasks.get(task_name)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Unknown batch task: {task_name}")

        result = await container.batch_processor.run(
            BatchRequest(
                item_ids=request.item_ids,
                batch_size=request.batch_size,
                skip_existing=request.skip_existing,
            ),
            task,
        )
        return BaseResponse.success_response(request.request_id, result)


app = create_app()
