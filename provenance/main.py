"""HTTP entry points: an API-Gateway-style Lambda handler and a Starlette app."""

from __future__ import annotations

import functools
import json
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse
from starlette.routing import Route

from provenance import __version__
from provenance.engine.aggregation import ReportValidationError
from provenance.engine.snapshot_store import AnalysisCancelled
from provenance.ingest.github import GitHubSource, GitHubToolError, create_github_client
from provenance.ingest.webhook import WebhookHandler, WebhookParseError
from provenance.service import NotFoundError, ProvenanceService
from provenance.utils.config_loader import ConfigLoaderError, load_config
from provenance.utils.logging import configure_logging, get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from starlette.requests import Request

    LambdaHandler = Callable[[dict[str, Any], Any], dict[str, Any]]
    Handler = Callable[[ProvenanceService, dict[str, Any], re.Match[str]], dict[str, Any]]

# Configure logging on module load
configure_logging()
logger = get_logger("main")


def _create_response(status_code: int, body: Any) -> dict[str, Any]:
    """Create a Lambda response.

    Args:
        status_code: HTTP status code.
        body: JSON-serializable response body.

    Returns:
        Lambda response dictionary.
    """
    return {
        "statusCode": status_code,
        "headers": {
            "Content-Type": "application/json",
        },
        "body": json.dumps(body),
    }


def _error(status_code: int, error: str, message: str) -> dict[str, Any]:
    return _create_response(status_code, {"error": error, "message": message})


def _query(event: dict[str, Any], name: str) -> str | None:
    params = event.get("queryStringParameters") or {}
    value = params.get(name)
    return value or None


def _handle_health(
    service: ProvenanceService,  # noqa: ARG001
    event: dict[str, Any],  # noqa: ARG001
    match: re.Match[str],  # noqa: ARG001
) -> dict[str, Any]:
    return _create_response(
        200,
        {
            "status": "healthy",
            "version": __version__,
        },
    )


def _handle_pull_request(
    service: ProvenanceService,
    event: dict[str, Any],
    match: re.Match[str],
) -> dict[str, Any]:
    analysis = service.analyze(unquote(match["pr_id"]), head_sha=_query(event, "head"))
    return _create_response(200, analysis.to_dict())


def _handle_files(
    service: ProvenanceService,
    event: dict[str, Any],
    match: re.Match[str],
) -> dict[str, Any]:
    files = service.get_files(unquote(match["pr_id"]), head_sha=_query(event, "head"))
    return _create_response(200, [f.to_dict() for f in files])


def _handle_history(
    service: ProvenanceService,
    event: dict[str, Any],  # noqa: ARG001
    match: re.Match[str],
) -> dict[str, Any]:
    changes = service.get_history(unquote(match["pr_id"]))
    return _create_response(200, [c.to_dict() for c in changes])


def _handle_freshness(
    service: ProvenanceService,
    event: dict[str, Any],
    match: re.Match[str],
) -> dict[str, Any]:
    pr_id = unquote(match["pr_id"])
    head, files = service.freshness(pr_id, head_sha=_query(event, "head"))
    return _create_response(
        200,
        {
            "pullRequestId": pr_id,
            "headSha": head,
            "fresh": all(files.values()),
            "files": files,
        },
    )


def _handle_report(
    service: ProvenanceService,
    event: dict[str, Any],
    match: re.Match[str],
) -> dict[str, Any]:
    project_id = match.groupdict().get("project_id")
    result = service.compute_report(
        int(match["report_id"]),
        statuses=_query(event, "statuses") or _query(event, "status"),
        project_id=int(project_id) if project_id else None,
    )
    return _create_response(200, result.to_dict())


def _handle_project_analysis(
    service: ProvenanceService,
    event: dict[str, Any],  # noqa: ARG001
    match: re.Match[str],
) -> dict[str, Any]:
    result = service.project_analysis(int(match["project_id"]))
    return _create_response(200, result.to_dict())


def _handle_webhook(  # noqa: PLR0911
    service: ProvenanceService,
    event: dict[str, Any],
    match: re.Match[str],  # noqa: ARG001
) -> dict[str, Any]:
    """Record a GitHub webhook delivery.

    Deliveries are trusted; signature checks happen upstream.
    """
    # Get headers (case-insensitive)
    headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}

    event_type = headers.get("x-github-event", "")
    delivery_id = headers.get("x-github-delivery", "")

    logger.info(
        "Received webhook",
        extra={
            "event_type": event_type,
            "delivery_id": delivery_id,
        },
    )

    try:
        payload = json.loads(event.get("body") or "")
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON payload", extra={"error": str(e)})
        return _error(400, "invalid_payload", f"Invalid JSON: {e}")

    if not isinstance(payload, dict):
        return _error(400, "invalid_payload", "Payload must be a JSON object")

    try:
        result = WebhookHandler().dispatch(event_type, payload)
    except WebhookParseError as e:
        logger.warning("Failed to parse webhook", extra={"error": str(e)})
        return _error(400, "invalid_payload", str(e))

    if result.get("event_type") == "ping":
        return _create_response(
            200,
            {
                "status": "ok",
                "message": f"Pong! {result.get('zen', '')}",
            },
        )

    if result.get("status") == "ignored":
        return _create_response(
            200,
            {
                "status": "ignored",
                "message": f"Event type '{event_type}' not handled",
            },
        )

    if "error" in result:
        return _error(400, "invalid_payload", result["error"])

    pr = result["pull_request"]
    change = result["change"]
    if change is None:
        return _create_response(
            200,
            {
                "status": "ignored",
                "message": f"Action '{result.get('action', '')}' is not tracked",
            },
        )

    recorded = service.record_change(pr, change)

    if result["should_ingest"] and service.feed is not None:
        service.sync_pull_request(pr.repo_full_name, pr.pr_number)

    return _create_response(
        202,
        {
            "status": "accepted" if recorded is not None else "duplicate",
            "message": f"{change.type.value} for PR #{pr.pr_number}",
        },
    )


# (method, path pattern, handler); patterns are tried in order
ROUTES: list[tuple[str, re.Pattern[str], Handler]] = [
    ("GET", re.compile(r"^/health$"), _handle_health),
    ("GET", re.compile(r"^/pull-requests/(?P<pr_id>[^/]+)$"), _handle_pull_request),
    ("GET", re.compile(r"^/pull-requests/(?P<pr_id>[^/]+)/files$"), _handle_files),
    ("GET", re.compile(r"^/pull-requests/(?P<pr_id>[^/]+)/history$"), _handle_history),
    ("GET", re.compile(r"^/pull-requests/(?P<pr_id>[^/]+)/freshness$"), _handle_freshness),
    ("GET", re.compile(r"^/reports/(?P<report_id>\d+)/compute$"), _handle_report),
    (
        "GET",
        re.compile(r"^/projects/(?P<project_id>\d+)/reports/(?P<report_id>\d+)/compute$"),
        _handle_report,
    ),
    ("GET", re.compile(r"^/projects/(?P<project_id>\d+)/analysis$"), _handle_project_analysis),
    ("POST", re.compile(r"^/webhook$"), _handle_webhook),
]


def create_handler(service: ProvenanceService) -> LambdaHandler:
    """Build a Lambda handler bound to a service instance."""

    def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:  # noqa: ARG001
        path = event.get("path", "")
        method = event.get("httpMethod", "")

        logger.info(
            "Request received",
            extra={"path": path, "method": method},
        )

        for route_method, pattern, route_handler in ROUTES:
            match = pattern.match(path)
            if match and method == route_method:
                break
        else:
            return _error(404, "not_found", f"Path not found: {method} {path}")

        try:
            return route_handler(service, event, match)
        except (NotFoundError, AnalysisCancelled) as e:
            return _error(404, "not_found", str(e))
        except ReportValidationError as e:
            return _error(400, "validation_error", str(e))
        except GitHubToolError as e:
            logger.error("GitHub request failed", extra={"path": path, "error": str(e)})
            return _error(500, "internal_error", str(e))
        except Exception as e:
            logger.exception("Unhandled error", extra={"path": path, "error": str(e)})
            return _error(500, "internal_error", "Internal server error")

    return handler


def create_service() -> ProvenanceService:
    """Build a service from the environment.

    Reads GitHub credentials (see `create_github_client`) and the engine
    configuration from the directory in PROVENANCE_CONFIG_DIR.

    Raises:
        GitHubToolError: If GitHub credentials are missing.
        ConfigLoaderError: If the configuration file is invalid.
    """
    config = load_config(Path(os.environ.get("PROVENANCE_CONFIG_DIR", ".")))
    source = GitHubSource(create_github_client())
    return ProvenanceService(source, config=config, feed=source)


@functools.cache
def _default_handler() -> LambdaHandler:
    return create_handler(create_service())


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """AWS Lambda handler for the read API and webhook deliveries.

    Args:
        event: Lambda event from API Gateway.
        context: Lambda context.

    Returns:
        Lambda response dictionary.
    """
    try:
        handler = _default_handler()
    except (GitHubToolError, ConfigLoaderError) as e:
        logger.error("Service not configured", extra={"error": str(e)})
        return _error(500, "configuration_error", str(e))
    return handler(event, context)


def create_app(service: ProvenanceService | None = None) -> Starlette:
    """Expose the Lambda routes through Starlette for local serving."""
    handler = create_handler(service) if service is not None else lambda_handler

    async def proxy(request: Request) -> JSONResponse:
        body = await request.body()
        event = {
            "httpMethod": request.method,
            "path": request.url.path,
            "headers": dict(request.headers),
            "queryStringParameters": dict(request.query_params),
            "body": body.decode(),
        }
        response = await run_in_threadpool(handler, event, None)
        return JSONResponse(
            content=json.loads(response["body"]),
            status_code=response["statusCode"],
        )

    return Starlette(
        routes=[
            Route("/health", proxy, methods=["GET"]),
            Route("/pull-requests/{pr_id}", proxy, methods=["GET"]),
            Route("/pull-requests/{pr_id}/files", proxy, methods=["GET"]),
            Route("/pull-requests/{pr_id}/history", proxy, methods=["GET"]),
            Route("/pull-requests/{pr_id}/freshness", proxy, methods=["GET"]),
            Route("/reports/{report_id}/compute", proxy, methods=["GET"]),
            Route("/projects/{project_id}/reports/{report_id}/compute", proxy, methods=["GET"]),
            Route("/projects/{project_id}/analysis", proxy, methods=["GET"]),
            Route("/webhook", proxy, methods=["POST"]),
        ]
    )


# For local development
if __name__ == "__main__":
    import uvicorn

    print(f"Starting provenance engine v{__version__} on http://localhost:8000")
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
