"""Webhook event handler and dispatcher."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, ClassVar

from provenance.models.change import ChangeType, PullRequestChange
from provenance.models.pull_request import PullRequest, parse_timestamp
from provenance.utils.logging import get_logger

logger = get_logger("ingest.webhook")


class WebhookParseError(Exception):
    """Raised when webhook payload parsing fails."""

    pass


# pull_request actions recorded in the change log; "closed" is split on `merged`
ACTION_TYPES: dict[str, ChangeType] = {
    "opened": ChangeType.OPENED,
    "synchronize": ChangeType.SYNCHRONIZE,
    "reopened": ChangeType.REOPENED,
    "edited": ChangeType.EDITED,
}


def parse_pr_event(payload: dict[str, Any]) -> PullRequest:
    """Parse a pull_request webhook event.

    Args:
        payload: The webhook payload.

    Returns:
        PullRequest instance.

    Raises:
        WebhookParseError: If required fields are missing.
    """
    try:
        if "pull_request" not in payload:
            raise WebhookParseError("Missing 'pull_request' in payload")

        return PullRequest.from_webhook_payload(payload)

    except KeyError as e:
        raise WebhookParseError(f"Missing required field: {e}") from e
    except ValueError as e:
        raise WebhookParseError(f"Invalid field value: {e}") from e


def build_change(payload: dict[str, Any], pull_request: PullRequest) -> PullRequestChange | None:
    """Turn a pull_request action into a change event.

    Returns:
        The event, or None for actions the change log does not track.

    Raises:
        WebhookParseError: If the payload lacks the event's actor or time.
    """
    action = payload.get("action", "")
    pr = payload["pull_request"]

    if action == "closed":
        change_type = ChangeType.MERGED if pr.get("merged") else ChangeType.CLOSED
    elif action in ACTION_TYPES:
        change_type = ACTION_TYPES[action]
    else:
        return None

    actor = (payload.get("sender") or {}).get("login") or pull_request.author
    timestamp_key = {
        ChangeType.OPENED: "created_at",
        ChangeType.MERGED: "merged_at",
        ChangeType.CLOSED: "closed_at",
    }.get(change_type, "updated_at")

    try:
        changed_at = (
            parse_timestamp(pr.get(timestamp_key))
            or parse_timestamp(pr.get("updated_at"))
            or datetime.now(UTC)
        )
    except ValueError as e:
        raise WebhookParseError(f"Invalid timestamp: {e}") from e

    merged_by = (pr.get("merged_by") or {}).get("login")
    if change_type == ChangeType.MERGED:
        merged_by = merged_by or actor

    try:
        return PullRequestChange(
            pull_request_id=pull_request.id,
            type=change_type,
            github_user=actor,
            changed_at=changed_at,
            pr_title=pull_request.title if change_type == ChangeType.OPENED else None,
            pr_number=pull_request.pr_number if change_type == ChangeType.OPENED else None,
            repo_full_name=(
                pull_request.repo_full_name if change_type == ChangeType.OPENED else None
            ),
            merged=bool(pr.get("merged")) if change_type == ChangeType.CLOSED else None,
            merged_by=merged_by,
            new_title=pull_request.title if change_type == ChangeType.EDITED else None,
        )
    except ValueError as e:
        raise WebhookParseError(f"Invalid change event: {e}") from e


def parse_ping_event(payload: dict[str, Any]) -> dict[str, Any]:
    """Parse a ping webhook event.

    Raises:
        WebhookParseError: If required fields are missing.
    """
    if "zen" not in payload:
        raise WebhookParseError("Missing 'zen' in ping payload")

    return {
        "zen": payload["zen"],
        "hook_id": payload.get("hook_id"),
        "hook_type": payload.get("hook", {}).get("type"),
    }


class WebhookHandler:
    """Parses GitHub webhook events into pull requests and change events."""

    # Actions after which the PR's diff must be (re)ingested
    INGEST_ACTIONS: ClassVar[set[str]] = {"opened", "synchronize", "reopened"}

    def dispatch(self, event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Dispatch a webhook event to the appropriate handler.

        Args:
            event_type: The X-GitHub-Event header value.
            payload: The webhook payload.

        Returns:
            Dictionary with dispatch result.
        """
        logger.info(
            "Dispatching webhook event",
            extra={"event_type": event_type, "action": payload.get("action")},
        )

        if event_type == "pull_request":
            return self._handle_pull_request(payload)
        elif event_type == "ping":
            return self._handle_ping(payload)
        else:
            return self._handle_unsupported(event_type)

    def _handle_pull_request(self, payload: dict[str, Any]) -> dict[str, Any]:
        action = payload.get("action", "")
        result: dict[str, Any] = {
            "event_type": "pull_request",
            "action": action,
            "should_ingest": action in self.INGEST_ACTIONS,
        }

        try:
            pr = parse_pr_event(payload)
            change = build_change(payload, pr)
        except WebhookParseError as e:
            logger.error("Failed to parse PR event", extra={"error": str(e)})
            result["should_ingest"] = False
            result["error"] = str(e)
            return result

        result["pull_request"] = pr
        result["change"] = change

        if change is None:
            logger.info("PR action not tracked", extra={"action": action})
        else:
            logger.info(
                "PR event parsed",
                extra={
                    "pr_number": pr.pr_number,
                    "repository": pr.repo_full_name,
                    "change_type": change.type.value,
                },
            )

        return result

    def _handle_ping(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            ping_data = parse_ping_event(payload)
            logger.info("Ping event received", extra={"zen": ping_data["zen"]})
            return {
                "event_type": "ping",
                "status": "ok",
                "zen": ping_data["zen"],
            }
        except WebhookParseError as e:
            logger.error("Failed to parse ping event", extra={"error": str(e)})
            return {
                "event_type": "ping",
                "status": "error",
                "error": str(e),
            }

    def _handle_unsupported(self, event_type: str) -> dict[str, Any]:
        logger.info(
            "Ignoring unsupported event type",
            extra={"event_type": event_type},
        )

        return {
            "event_type": event_type,
            "status": "ignored",
        }
