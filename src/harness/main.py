"""FastAPI application entry point for the agent harness.

Receives GitHub webhooks, acknowledges triggers immediately and runs the
agent in background tasks. When backend reuse is enabled one OpenCode
server is started at startup, shared by every run and shut down on exit.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional, Set

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from .agent.artifacts import PromptArtifactSink
from .agent.executor import AgentExecutor
from .backend.client import BackendError
from .backend.server import BackendHandle, bootstrap_backend
from .config import HarnessSettings, get_settings
from .dispatcher import Dispatcher
from .github.client import GitHubClient
from .github.reactions import ReactionManager
from .logging_setup import configure_logging
from .observability.emitter import EventSinkType, create_event_emitter
from .observability.metrics import generate_metrics_output
from .webhook.handler import WebhookHandler
from .webhook.models import TriggerEvent

logger = logging.getLogger(__name__)

# Global instances, initialized during lifespan startup
settings: Optional[HarnessSettings] = None
dispatcher: Optional[Dispatcher] = None
webhook_handler: Optional[WebhookHandler] = None
github_client: Optional[GitHubClient] = None
shared_backend: Optional[BackendHandle] = None
shutdown_event: Optional[asyncio.Event] = None
background_tasks: Set["asyncio.Task[None]"] = set()


def _redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters."""
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(cfg: HarnessSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info(
        "Harness configuration",
        extra={
            "github_base_url": cfg.github_base_url,
            "github_token": _redact_secret(cfg.github_token),
            "workspace": str(cfg.resolved_workspace),
            "agent": cfg.agent,
            "model": cfg.model,
            "timeout_seconds": cfg.timeout_seconds,
            "prompt_mode": cfg.prompt_mode,
            "server_url": cfg.server_url,
            "reuse_backend": cfg.reuse_backend,
            "max_prompt_attempts": cfg.max_prompt_attempts,
        },
    )


def _build_dispatcher(
    cfg: HarnessSettings,
    gh_client: GitHubClient,
    backend: Optional[BackendHandle],
) -> Dispatcher:
    """Wire the executor, reactions and GitHub client into a Dispatcher."""
    executor = AgentExecutor(
        cfg,
        event_emitter=create_event_emitter([EventSinkType.LOGGING, EventSinkType.METRICS]),
        artifact_sink=PromptArtifactSink(cfg.log_path) if cfg.prompt_artifacts_enabled else None,
    )
    return Dispatcher(
        executor=executor,
        github_client=gh_client,
        reactions=ReactionManager(gh_client, bot_login=cfg.bot_login),
        custom_prompt=cfg.custom_prompt,
        backend=backend,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load configuration, wire dependencies and release them on shutdown."""
    global settings, dispatcher, webhook_handler, github_client, shared_backend, shutdown_event

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    logger.info("Agent harness starting up...")
    _log_configuration(settings)

    shutdown_event = asyncio.Event()
    webhook_handler = WebhookHandler(settings.trigger_phrase, bot_login=settings.bot_login)
    github_client = GitHubClient(token=settings.github_token, base_url=settings.github_base_url)

    if settings.reuse_backend:
        try:
            shared_backend = await bootstrap_backend(settings, shutdown_event)
        except BackendError as e:
            logger.error("Shared backend unavailable, starting one per run: %s", e)
            shared_backend = None

    dispatcher = _build_dispatcher(settings, github_client, shared_backend)
    logger.info("Agent harness started successfully")

    yield

    logger.info("Agent harness shutting down...")
    shutdown_event.set()

    if background_tasks:
        await asyncio.gather(*background_tasks, return_exceptions=True)

    if shared_backend is not None:
        await shared_backend.aclose()
        shared_backend = None

    await github_client.close()
    logger.info("Agent harness shutdown complete")


app = FastAPI(
    title="Agent Harness",
    description="Runs an AI coding agent for GitHub triggers and relays its results",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health():
    """Liveness probe endpoint."""
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    """Readiness probe: the dispatcher is wired and any shared backend is up."""
    if dispatcher is None:
        return JSONResponse(status_code=503, content={"status": "not_ready"})

    if shared_backend is None:
        backend_status = "per_run"
    elif shared_backend.is_shut_down:
        backend_status = "down"
    else:
        backend_status = "healthy"

    status = "not_ready" if backend_status == "down" else "ready"
    return JSONResponse(
        status_code=200 if status == "ready" else 503,
        content={"status": status, "dependencies": {"backend": backend_status}},
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_metrics_output(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


async def _run_dispatch(event: TriggerEvent) -> None:
    try:
        await dispatcher.dispatch(event, cancel_event=shutdown_event)
    except Exception:
        logger.exception("Agent run failed", extra={"target_id": event.target_id})


@app.post("/webhooks/github")
async def github_webhook(request: Request):
    """GitHub webhook receiver endpoint.

    Acknowledges immediately; the agent runs in a retained background task.
    """
    if webhook_handler is None or dispatcher is None:
        logger.error("Harness not initialized")
        return JSONResponse(
            status_code=503,
            content={"status": "error", "message": "Harness not initialized"},
        )

    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"status": "error", "message": "Invalid JSON"})

    event_name = request.headers.get("x-github-event", "")
    event = webhook_handler.parse_event(event_name, payload)
    if event is None:
        return {"status": "ignored", "message": "Unsupported or non-triggering event"}

    task = asyncio.create_task(_run_dispatch(event))
    background_tasks.add(task)
    task.add_done_callback(background_tasks.discard)

    return {"status": "accepted", "target_id": event.target_id}


def run() -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    cfg = get_settings()
    uvicorn.run("src.harness.main:app", host=cfg.host, port=cfg.port)


if __name__ == "__main__":
    run()
