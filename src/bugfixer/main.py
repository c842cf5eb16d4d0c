"""FastAPI application entry point for the bug fixer.

Routes:
- POST /analyze                 Analyze one issue by URL
- GET  /context                 Assembled repository context
- GET  /proposals               Pending proposals for a repository
- GET  /proposals/{id}          One proposal
- POST /validate/{id}/approve   Approve and apply a proposal
- POST /validate/{id}/reject    Reject a proposal
- POST /scan                    Background scan over open issues
- POST /test/email              SMTP connectivity check
- GET  /health, GET /metrics

Error bodies are always JSON: {"success": false, "error": "<message>"}.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional, Set

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.bugfixer.config import BugFixerSettings, get_settings
from src.bugfixer.events.emitter import CompositeEventEmitter, LoggingEventEmitter
from src.bugfixer.events.metrics import MetricsEventEmitter, generate_metrics_output
from src.bugfixer.github.client import GitHubAPIError, GitHubClient
from src.bugfixer.github.models import parse_issue_url
from src.bugfixer.logging_config import configure_logging, redact_secret
from src.bugfixer.notifications.mailer import EmailNotifier
from src.bugfixer.proposals.generator import ProposalGenerator
from src.bugfixer.proposals.store import InvalidProposalStateError, ProposalNotFoundError
from src.bugfixer.registry import AgentRegistry, UnknownRepositoryError

logger = logging.getLogger(__name__)

# Characters of assembled context returned by GET /context
CONTEXT_RESPONSE_CHARS = 10000


class AnalyzeRequest(BaseModel):
    """Body of POST /analyze."""

    model_config = ConfigDict(populate_by_name=True)

    issue_url: str = Field(..., alias="issueUrl", min_length=1)


def _log_configuration(settings: BugFixerSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info(
        "Bug fixer configuration",
        extra={
            "github_base_url": settings.github_base_url,
            "github_token": redact_secret(settings.github_token),
            "llm_url": settings.llm_url,
            "llm_model": settings.llm_model,
            "llm_api_key": redact_secret(settings.llm_api_key),
            "smtp_host": settings.smtp_host,
            "smtp_port": settings.smtp_port,
            "smtp_secure": settings.smtp_secure,
            "smtp_user": settings.smtp_user,
            "smtp_password": redact_secret(settings.smtp_password),
            "email_to": settings.email_to,
            "validation_url": settings.validation_url,
            "workspace_base_path": settings.workspace_base_path,
            "scan_labels": settings.scan_labels,
            "host": settings.host,
            "port": settings.port,
        },
    )


def build_registry(settings: BugFixerSettings) -> AgentRegistry:
    """Wire the shared collaborators into an AgentRegistry.

    Args:
        settings: Validated settings.

    Returns:
        AgentRegistry ready to serve any repository.
    """
    github_client = GitHubClient(
        token=settings.github_token,
        base_url=settings.github_base_url,
    )
    generator = ProposalGenerator(
        llm_url=settings.llm_url,
        api_key=settings.llm_api_key,
        model_name=settings.llm_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout_seconds,
    )
    notifier = EmailNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.email_from,
        recipient=settings.email_to,
        validation_url=settings.validation_url,
        username=settings.smtp_user,
        password=settings.smtp_password,
        secure=settings.smtp_secure,
        timeout=settings.smtp_timeout_seconds,
    )
    event_emitter = CompositeEventEmitter([LoggingEventEmitter(), MetricsEventEmitter()])

    return AgentRegistry(
        settings=settings,
        github_client=github_client,
        generator=generator,
        notifier=notifier,
        event_emitter=event_emitter,
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _registry(request: Request) -> AgentRegistry:
    return request.app.state.registry


async def _body_params(request: Request) -> dict:
    """JSON body as a dict; empty, form or malformed bodies yield {}."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


async def _param(request: Request, name: str) -> Optional[Any]:
    """Look up a parameter in the JSON body, then the query string."""
    body = await _body_params(request)
    value = body.get(name)
    if value is None or value == "":
        value = request.query_params.get(name)
    return value if value not in (None, "") else None


def _parse_limit(value: Any) -> Optional[int]:
    """Positive integer scan limit.

    Raises:
        ValueError: If the value is not a positive integer.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("limit must be a positive integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError("limit must be a positive integer")
        value = int(value)
    try:
        limit = int(str(value).strip())
    except ValueError:
        raise ValueError("limit must be a positive integer")
    if limit < 1:
        raise ValueError("limit must be a positive integer")
    return limit


router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Liveness probe with mail transport connectivity."""
    email_ok = await _registry(request).notifier.verify_connection()
    return {
        "status": "healthy",
        "email": "connected" if email_ok else "unavailable",
    }


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_metrics_output(), media_type=CONTENT_TYPE_LATEST)


@router.post("/analyze")
async def analyze(payload: AnalyzeRequest, request: Request):
    """Fetch an issue, analyze it and request validation for any proposal."""
    parsed = parse_issue_url(payload.issue_url, _registry(request).settings.github_web_url)
    if parsed is None:
        return _error(400, "Invalid GitHub issue URL")

    repository, issue_number = parsed
    agent = _registry(request).get_or_create(repository.full_name)

    try:
        issue = await agent.get_issue(issue_number)
    except GitHubAPIError as e:
        if e.status_code == 404:
            return _error(404, f"Issue #{issue_number} not found")
        logger.exception("Failed to fetch issue", extra={"issue_url": payload.issue_url})
        return _error(500, str(e))

    try:
        result = await agent.analyze_issue(issue)
    except Exception as e:
        logger.exception(
            "Analysis failed",
            extra={"issue_id": repository.issue_id(issue_number)},
        )
        return _error(500, str(e))

    body = {
        "success": True,
        "proposalCreated": result.should_fix,
        "issue": {
            "number": issue.number,
            "title": issue.title,
            "url": f"{agent.repo_url}/issues/{issue.number}",
        },
    }
    if result.proposal is not None:
        body["proposal"] = result.proposal.model_dump(by_alias=True, mode="json")
        body["message"] = "Fix proposal created and sent for validation"
    else:
        body["message"] = f"No fix proposed: {result.reason}"
    return body


@router.get("/context")
async def context(request: Request, repo: Optional[str] = None, issue: Optional[int] = None):
    """Assembled context for a repository, optionally focused on one issue."""
    if not repo:
        return _error(400, "Missing repo parameter")

    registry = _registry(request)
    ref = registry.resolve(repo)
    assembler = registry.assembler_for(repo)

    focus = None
    if issue is not None:
        try:
            focus = await registry.github_client.get_issue(ref.owner, ref.name, issue)
        except GitHubAPIError as e:
            if e.status_code == 404:
                return _error(404, f"Issue #{issue} not found")
            return _error(500, str(e))

    text = await assembler.assemble(focus)
    return {
        "success": True,
        "repository": ref.full_name,
        "issue": issue,
        "context": text[:CONTEXT_RESPONSE_CHARS],
        "truncated": len(text) > CONTEXT_RESPONSE_CHARS,
        "totalSize": len(text),
    }


@router.get("/proposals")
async def list_proposals(request: Request, repo: Optional[str] = None):
    """Pending proposals for a repository."""
    if not repo:
        return _error(400, "Missing repo parameter")

    registry = _registry(request)
    ref = registry.resolve(repo)
    agent = registry.get(repo)
    pending = await agent.list_pending() if agent is not None else []
    return {
        "repository": ref.full_name,
        "proposals": [proposal.summary() for proposal in pending],
        "count": len(pending),
    }


@router.get("/proposals/{proposal_id}")
async def get_proposal(proposal_id: str, request: Request, repo: Optional[str] = None):
    """Full proposal, or 404."""
    if not repo:
        return _error(400, "Missing repo parameter")

    agent = _registry(request).get(repo)
    proposal = await agent.get_proposal(proposal_id) if agent is not None else None
    if proposal is None:
        return _error(404, "Proposal not found")
    return proposal.model_dump(by_alias=True, mode="json")


@router.post("/validate/{proposal_id}/approve")
async def approve(proposal_id: str, request: Request):
    """Approve a pending proposal and run the apply pipeline."""
    repo = await _param(request, "repo")
    if not repo:
        return _error(400, "Missing repo parameter")

    agent = _registry(request).get(str(repo))
    if agent is None:
        raise ProposalNotFoundError(proposal_id)
    try:
        outcome = await agent.approve_proposal(proposal_id)
    except (ProposalNotFoundError, InvalidProposalStateError):
        raise
    except Exception as e:
        return _error(500, str(e))

    if not outcome.success:
        return _error(500, outcome.proposal.error or "Validation failed")

    return {
        "success": True,
        "message": "Fix applied and pull request created",
        "prUrl": outcome.pr_url,
        "proposal": outcome.proposal.model_dump(by_alias=True, mode="json"),
    }


@router.post("/validate/{proposal_id}/reject")
async def reject(proposal_id: str, request: Request):
    """Reject a pending proposal."""
    repo = await _param(request, "repo")
    if not repo:
        return _error(400, "Missing repo parameter")

    agent = _registry(request).get(str(repo))
    if agent is None:
        raise ProposalNotFoundError(proposal_id)
    rejected = await agent.reject_proposal(proposal_id)
    return {
        "success": True,
        "message": "Proposal rejected",
        "proposalId": rejected.id,
    }


@router.post("/scan")
async def scan(request: Request):
    """Start a background scan; responds before any issue is analyzed."""
    repo = await _param(request, "repo")
    if not repo:
        return _error(400, "Missing repo parameter")

    try:
        limit = _parse_limit(await _param(request, "limit"))
    except ValueError as e:
        return _error(400, str(e))

    agent = _registry(request).get_or_create(str(repo))
    tasks: Set[asyncio.Task] = request.app.state.scan_tasks

    task = asyncio.create_task(agent.scan_and_analyze(limit))
    tasks.add(task)
    task.add_done_callback(_scan_done(tasks, agent.repository.full_name))

    return JSONResponse(
        status_code=202,
        content={
            "success": True,
            "message": "Scan started",
            "repository": agent.repository.full_name,
            "limit": limit,
        },
    )


def _scan_done(tasks: Set[asyncio.Task], repository: str):
    def callback(task: asyncio.Task) -> None:
        tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Scan failed",
                extra={"repository": repository, "error": str(exc)},
                exc_info=exc,
            )

    return callback


@router.post("/test/email")
async def test_email(request: Request):
    """Verify SMTP connectivity."""
    if await _registry(request).notifier.verify_connection():
        return {"success": True, "message": "SMTP connection verified"}
    return _error(500, "SMTP connection failed")


# -----------------------------------------------------------------------------
# Application
# -----------------------------------------------------------------------------


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ProposalNotFoundError)
    async def not_found(request: Request, exc: ProposalNotFoundError):
        return _error(404, str(exc))

    @app.exception_handler(InvalidProposalStateError)
    async def invalid_state(request: Request, exc: InvalidProposalStateError):
        return _error(409, str(exc))

    @app.exception_handler(UnknownRepositoryError)
    async def unknown_repository(request: Request, exc: UnknownRepositoryError):
        return _error(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        fields = ", ".join(
            ".".join(str(part) for part in error["loc"] if part != "body")
            for error in exc.errors()
        )
        return _error(400, f"Invalid request: {fields}" if fields else "Invalid request")

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))


def create_app(registry: Optional[AgentRegistry] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        registry: Pre-built registry. When omitted, settings are loaded
                  and the registry is wired during startup.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_registry = registry is None
        if owns_registry:
            settings = get_settings()
            configure_logging(settings.log_level, settings.log_format)
            _log_configuration(settings)
            app.state.registry = build_registry(settings)

        logger.info("Bug fixer started")

        yield

        logger.info("Bug fixer shutting down")
        for task in list(app.state.scan_tasks):
            task.cancel()
        if owns_registry:
            await app.state.registry.close()

    app = FastAPI(
        title="Pluggable Bug Fixer",
        description="Human-approved automated fixes for GitHub issues",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.scan_tasks = set()
    if registry is not None:
        app.state.registry = registry

    _install_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "src.bugfixer.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
    )
