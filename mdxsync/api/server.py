# uvicorn mdxsync.api.server:create_app_from_env --factory --reload
import json
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from ..sync.config import ArticleStatus, SyncConfig
from ..sync.error_tracker import AuthError, ConfigurationError, StoreUnavailableError, SyncException
from ..sync.events import EventPayloadError, PingEvent, TriggerEvent, parse_event
from ..sync.github_client import GitHubClient
from ..sync.logging_manager import get_logger
from ..sync.orchestrator import SyncOrchestrator
from ..sync.store import ContentStore
from .signature import verify_signature

logger = get_logger(__name__)


def create_app(config: SyncConfig, store: Optional[ContentStore] = None,
               client: Optional[GitHubClient] = None) -> FastAPI:
    """
    Build the API app: the GitHub webhook receiver plus read endpoints
    over the content store.
    """
    store = store or ContentStore(config.database_path)
    client = client or GitHubClient(config)
    orchestrator = SyncOrchestrator(config, store, client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await client.close()

    app = FastAPI(openapi_url=None, redirect_slashes=False, lifespan=lifespan)
    app.state.config = config
    app.state.store = store
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(_webhook_router(config, orchestrator))
    app.include_router(_content_router(store))
    return app


async def _run_in_background(orchestrator: SyncOrchestrator, trigger: TriggerEvent, delivery: Optional[str]):
    try:
        await orchestrator.run(trigger)
    except SyncException as e:
        logger.error(f"Background sync failed: {e.message}", extra={'details': {'delivery': delivery, 'error_type': type(e).__name__}})


def _webhook_router(config: SyncConfig, orchestrator: SyncOrchestrator) -> APIRouter:
    router = APIRouter(prefix="/api/webhooks")

    @router.post("/github/{tenant_id}")
    async def github_webhook(
        tenant_id: str,
        request: Request,
        background_tasks: BackgroundTasks,
        x_github_event: Optional[str] = Header(None),
        x_hub_signature_256: Optional[str] = Header(None),
        x_github_delivery: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        """Receive a GitHub webhook delivery and sync the changes it announces.

        - 400: bad tenant, missing event header, invalid JSON or payload shape
        - 401: missing or invalid signature
        - 500: secret not configured, or the sync was aborted
        """
        if len(tenant_id) < 3 or tenant_id != config.webhook.tenant_id:
            raise HTTPException(status_code=400, detail="Invalid tenant ID")
        if not x_github_event:
            raise HTTPException(status_code=400, detail="Missing GitHub event header")

        secret = config.webhook_secret()
        if not secret:
            logger.error(f"{config.webhook.secret_env} is not set, rejecting webhook")
            raise HTTPException(status_code=500, detail="Webhook not configured")

        body = await request.body()
        if not verify_signature(body, x_hub_signature_256, secret):
            logger.warning("Rejected webhook with invalid signature", extra={'details': {'delivery': x_github_delivery, 'event': x_github_event}})
            raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise HTTPException(status_code=400, detail="Invalid JSON payload")
        try:
            trigger = parse_event(x_github_event, payload)
        except EventPayloadError as e:
            raise HTTPException(status_code=400, detail=e.message)

        logger.info(f"Webhook received: {x_github_event}", extra={'details': {'tenant_id': tenant_id, 'delivery': x_github_delivery}})

        response: Dict[str, Any] = {
            "message": "Webhook processed successfully",
            "tenantId": tenant_id,
            "event": x_github_event,
            "delivery": x_github_delivery,
        }

        if isinstance(trigger, PingEvent):
            response["message"] = "Pong"
            return response

        if config.webhook.run_in_background:
            reason = orchestrator.should_sync(trigger)
            if reason is None:
                background_tasks.add_task(_run_in_background, orchestrator, trigger, x_github_delivery)
                response.update({"message": "Webhook accepted, sync queued", "queued": True})
            else:
                response.update({"queued": False, "reason": reason})
            return response

        try:
            summary = await orchestrator.run(trigger)
        except (AuthError, ConfigurationError, StoreUnavailableError) as e:
            raise HTTPException(status_code=500, detail=f"Sync aborted: {e.message}")
        except SyncException as e:
            raise HTTPException(status_code=500, detail=f"Sync failed: {e.message}")

        response.update({
            "processed": summary.processed,
            "succeeded": summary.succeeded,
            "failed": summary.failed,
            "skipped": summary.skipped,
            "changed": summary.changed,
        })
        if summary.reason:
            response["reason"] = summary.reason
        return response

    return router


def _content_router(store: ContentStore) -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> Dict[str, Any]:
        try:
            stats = store.get_statistics()
        except StoreUnavailableError as e:
            raise HTTPException(status_code=503, detail=e.message)
        return {"status": "ok", "articles": stats["total_articles"], "settings": stats["total_settings"]}

    @router.get("/content")
    def list_content(status: Optional[ArticleStatus] = ArticleStatus.PUBLISHED) -> List[Dict[str, Any]]:
        articles = store.list_articles(status.value if status else None)
        return [{k: v for k, v in a.to_dict().items() if k != 'body'} for a in articles]

    @router.get("/content/{slug:path}")
    def get_content(slug: str, include_unpublished: bool = False) -> Dict[str, Any]:
        """Read one article by slug; unpublished articles are hidden unless asked for."""
        article = store.get_article(slug.strip('/'))
        if article is None:
            raise HTTPException(status_code=404, detail=f"Content not found: {slug}")
        if article.status != ArticleStatus.PUBLISHED.value and not include_unpublished:
            raise HTTPException(status_code=404, detail=f"Content not found: {slug}")
        return article.to_dict()

    @router.get("/settings/{key}")
    def get_setting(key: str) -> Dict[str, Any]:
        setting = store.get_setting(key)
        if setting is None:
            raise HTTPException(status_code=404, detail=f"Setting not found: {key}")
        return setting.to_dict()

    return router


def create_app_from_env() -> FastAPI:
    """App factory for uvicorn, configured from environment variables."""
    return create_app(SyncConfig.from_env())
