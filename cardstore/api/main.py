"""
HTTP API over the deck store, the vector index and the search pipeline.
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    CreateCardsRequest,
    CreateDeckRequest,
    DebugResponse,
    DeckResponse,
    FlashcardResponse,
    HealthResponse,
    IndexRequest,
    OkResponse,
    ReconcileResponse,
    ReindexResponse,
    SaveDeckRequest,
    SaveDeckResponse,
    SearchResponse,
    UpdateDeckRequest,
    ValidationErrorResponse,
    ValidationFieldError,
)
from ..core import config
from ..core.errors import CardStoreError, ValidationError
from ..core.query_parser import parse_query, split_exclude_param
from ..core.schema import DeckPatch
from ..core.services import Services, build_services
from ..util.logging import logger


def _startup_services() -> Services:
    issues = config.validate_config()
    if issues:
        raise RuntimeError(f"Invalid configuration: {issues}")

    services = build_services()

    if config.REBUILD_ON_STARTUP and not services.vector_index.persistent:
        summary = services.reconciler.rebuild()
        logger.info(f"Rebuilt non-persistent vector index with {summary.cards_reindexed} cards")

    if config.is_reconcile_enabled():
        services.start_reconciliation()

    return services


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the FastAPI app. Tests pass their own ``services``; otherwise they are built at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "services", None) is None
        if owned:
            app.state.services = _startup_services()
        try:
            yield
        finally:
            if owned:
                app.state.services.close()
                app.state.services = None

    app = FastAPI(
        title="Flashcard Deck Store API",
        version=config.VERSION,
        description="Decks and flashcards in SQLite with semantic search over a vector index",
        docs_url="/docs" if config.debug_enabled() else None,
        redoc_url="/redoc" if config.debug_enabled() else None,
        lifespan=lifespan,
    )
    app.state.services = services

    # Frontend dev servers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CardStoreError)
    async def cardstore_error_handler(request: Request, exc: CardStoreError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            ValidationFieldError(
                field=".".join(str(part) for part in error.get("loc", ()) if part != "body"),
                message=error.get("msg", "invalid value"),
            )
            for error in exc.errors()
        ]
        message = "; ".join(f"{e.field}: {e.message}" if e.field else e.message for e in errors)
        body = ValidationErrorResponse(message=message or "Invalid request", errors=errors)
        return JSONResponse(status_code=400, content=body.model_dump())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions."""
        logger.error(f"Unhandled exception: {exc}")
        content = {"error_type": "INTERNAL_ERROR", "message": "Internal server error"}
        if config.debug_enabled():
            content["debug"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    _register_routes(app)
    return app


def get_services(request: Request) -> Services:
    return request.app.state.services


def _register_routes(app: FastAPI):

    @app.get("/health", response_model=HealthResponse)
    def health_check_endpoint(services: Services = Depends(get_services)):
        """Check system health."""
        db_health = services.db.health_check()
        return HealthResponse(
            status="healthy" if db_health else "unhealthy",
            version=config.VERSION,
            dbHealth=db_health,
            deckCount=services.dao.count_decks() if db_health else 0,
            cardCount=services.dao.get_card_count() if db_health else 0,
            vectorCount=services.vector_index.count(),
        )

    # Decks

    @app.post("/decks", response_model=DeckResponse, status_code=201)
    def create_deck(req: CreateDeckRequest, services: Services = Depends(get_services)):
        deck = services.dao.create_deck(req.title, req.source)
        return DeckResponse(**deck.to_api())

    @app.get("/decks", response_model=List[DeckResponse])
    def list_decks(services: Services = Depends(get_services)):
        return [DeckResponse(**deck.to_api()) for deck in services.dao.list_decks()]

    @app.post("/decks/save", response_model=SaveDeckResponse, status_code=201)
    def save_deck(req: SaveDeckRequest, services: Services = Depends(get_services)):
        """Create a deck with its cards and index them (coordinated save)."""
        result = services.coordinator.save_deck(
            req.title, req.source, [card.model_dump() for card in req.cards]
        )
        return SaveDeckResponse(**result.to_api())

    @app.get("/decks/{deck_id}", response_model=DeckResponse)
    def get_deck(deck_id: str, services: Services = Depends(get_services)):
        return DeckResponse(**services.dao.get_deck(deck_id).to_api())

    @app.patch("/decks/{deck_id}", response_model=DeckResponse)
    def update_deck(deck_id: str, req: UpdateDeckRequest, services: Services = Depends(get_services)):
        patch = DeckPatch(title=req.title, source=req.source, fields_set=set(req.model_fields_set))
        deck = services.coordinator.update_deck(deck_id, patch)
        return DeckResponse(**deck.to_api())

    @app.delete("/decks/{deck_id}", status_code=204)
    def delete_deck(deck_id: str, services: Services = Depends(get_services)):
        services.coordinator.delete_deck(deck_id)
        return Response(status_code=204)

    @app.post("/decks/{deck_id}/reindex", response_model=ReindexResponse)
    def reindex_deck(deck_id: str, services: Services = Depends(get_services)):
        indexed = services.coordinator.reindex_deck(deck_id)
        return ReindexResponse(ok=True, indexed=indexed)

    # Cards

    @app.get("/decks/{deck_id}/cards", response_model=List[FlashcardResponse])
    def list_cards(deck_id: str, q: Optional[str] = None, limit: Optional[int] = None,
                   offset: Optional[int] = None, services: Services = Depends(get_services)):
        cards = services.dao.list_cards(deck_id, text_filter=q, limit=limit, offset=offset)
        return [FlashcardResponse(**card.to_api()) for card in cards]

    @app.post("/decks/{deck_id}/cards", response_model=List[FlashcardResponse], status_code=201)
    def create_cards(deck_id: str, req: CreateCardsRequest, services: Services = Depends(get_services)):
        cards = services.coordinator.add_cards(deck_id, [card.model_dump() for card in req.cards])
        return [FlashcardResponse(**card.to_api()) for card in cards]

    # Vector index

    @app.post("/index", response_model=OkResponse)
    def index_cards(req: IndexRequest, services: Services = Depends(get_services)):
        services.coordinator.index_cards(req.deckId, [card.model_dump() for card in req.cards], req.source)
        return OkResponse(ok=True)

    @app.delete("/index/decks/{deck_id}", response_model=OkResponse)
    def remove_deck_index(deck_id: str, services: Services = Depends(get_services)):
        services.coordinator.remove_deck_index(deck_id)
        return OkResponse(ok=True)

    @app.get("/search", response_model=SearchResponse)
    def search_endpoint(q: str = "", k: Optional[str] = None, deckId: Optional[str] = None,
                        exclude: Optional[str] = None, services: Services = Depends(get_services)):
        """Semantic search. ``q`` may carry an ", excluding ..." clause."""
        if not q.strip():
            raise ValidationError("Search query is required")

        parsed = parse_query(q)
        if not parsed.query:
            raise ValidationError("Search query is required")

        hits = services.search.search(
            parsed.query,
            k=k,
            deck_id=deckId or None,
            exclude=parsed.exclude + split_exclude_param(exclude or ""),
        )
        return SearchResponse(cards=[hit.to_api() for hit in hits])

    # Maintenance

    @app.post("/reconcile", response_model=ReconcileResponse)
    def reconcile_endpoint(services: Services = Depends(get_services)):
        summary = services.reconciler.run()
        return ReconcileResponse(**summary.to_dict())

    @app.get("/debug", response_model=DebugResponse)
    def debug_endpoint(services: Services = Depends(get_services)):
        """Debug information (only available in DEBUG mode)."""
        if not config.debug_enabled():
            return JSONResponse(status_code=403, content={"error_type": "FORBIDDEN", "message": "Debug endpoint disabled"})

        return DebugResponse(
            heartbeat=services.heartbeat.get_status(),
            pendingPurges=[p.deck_id for p in services.dao.list_pending_purges()],
            unindexedDecks=services.dao.list_unindexed_deck_ids(),
            activeDeckLocks=services.locks.active(),
        )


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("cardstore.api.main:app", host="127.0.0.1", port=8000)
