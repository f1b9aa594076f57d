"""GitHub webhook receiver feeding the credit engine."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any, Mapping

from fastapi import APIRouter, Header, HTTPException, Request, status

from creditgate.credit.domain.commands import parse_command
from creditgate.credit.domain.container import get_actions, get_command_handler, get_engine
from creditgate.credit.domain.engine import ActionEvent
from creditgate.credit.domain.evaluator import ContentType, EvalContext
from creditgate.credit.domain.scoring import EventKind
from creditgate.credit.infra.github import action_ref
from creditgate.obs import logging as obs_logging
from creditgate.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credit/v1/webhooks", tags=["credit-webhooks"])


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.removeprefix("sha256="), expected)


def _login(user: Mapping[str, Any] | None) -> str | None:
    if not user or user.get("type") == "Bot":
        return None
    login = user.get("login")
    return str(login) if login else None


def _pull_request_event(action: str, payload: Mapping[str, Any], scope: str) -> ActionEvent | None:
    pr = payload.get("pull_request") or {}
    identity = _login(pr.get("user"))
    if identity is None:
        return None
    title = str(pr.get("title") or "")
    body = str(pr.get("body") or "")
    if action == "opened":
        diff_summary = None
        if pr.get("changed_files") is not None:
            diff_summary = f"+{pr.get('additions', 0)} -{pr.get('deletions', 0)} across {pr.get('changed_files')} files"
        return ActionEvent(
            identity=identity,
            scope=scope,
            event_kind=EventKind.PR_OPENED,
            content=f"{title}\n\n{body}",
            context=EvalContext(ContentType.PULL_REQUEST, title=title, body=body, diff_summary=diff_summary),
            action_ref=action_ref(scope, int(pr["number"])),
        )
    if action == "closed" and pr.get("merged"):
        return ActionEvent(
            identity=identity,
            scope=scope,
            event_kind=EventKind.PR_MERGED,
            content=f"{title}\n\n{body}",
            context=EvalContext(ContentType.PULL_REQUEST, title=title, body=body),
        )
    return None


def _comment_event(payload: Mapping[str, Any], scope: str) -> ActionEvent | None:
    issue = payload.get("issue") or {}
    if not issue.get("pull_request"):
        return None
    comment = payload.get("comment") or {}
    identity = _login(comment.get("user"))
    if identity is None:
        return None
    body = str(comment.get("body") or "")
    return ActionEvent(
        identity=identity,
        scope=scope,
        event_kind=EventKind.COMMENT,
        content=body,
        context=EvalContext(ContentType.COMMENT, body=body, thread_context=str(issue.get("title") or "")),
    )


def _review_event(payload: Mapping[str, Any], scope: str) -> ActionEvent | None:
    review = payload.get("review") or {}
    identity = _login(review.get("user"))
    if identity is None:
        return None
    body = str(review.get("body") or "")
    pr = payload.get("pull_request") or {}
    return ActionEvent(
        identity=identity,
        scope=scope,
        event_kind=EventKind.REVIEW_SUBMITTED,
        content=body,
        context=EvalContext(ContentType.REVIEW, body=body, thread_context=str(pr.get("title") or "")),
    )


def to_action_event(event_name: str, payload: Mapping[str, Any]) -> ActionEvent | None:
    """Map a webhook delivery to an engine action, or None when it is not tracked."""

    scope = str((payload.get("repository") or {}).get("full_name") or "")
    if not scope:
        return None
    action = str(payload.get("action") or "")
    if event_name == "pull_request":
        return _pull_request_event(action, payload, scope)
    if event_name == "issue_comment" and action == "created":
        return _comment_event(payload, scope)
    if event_name == "pull_request_review" and action == "submitted":
        return _review_event(payload, scope)
    return None


@router.post("/github")
async def github_webhook(
    request: Request,
    x_github_event: str | None = Header(default=None),
    x_hub_signature_256: str | None = Header(default=None),
):
    body = await request.body()
    secret = settings.webhook_secret
    if secret:
        if not verify_signature(secret, body, x_hub_signature_256):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_signature")
    elif settings.is_prod():
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="webhook_secret_not_configured")

    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_json") from exc

    if x_github_event == "ping":
        return {"status": "pong"}

    event = to_action_event(x_github_event or "", payload)
    if event is None:
        return {"status": "ignored"}

    tokens = obs_logging.bind_context(scope=event.scope, actor=event.identity)
    try:
        role = await get_actions().get_role(event.identity, event.scope)
        if event.event_kind is EventKind.COMMENT:
            command = parse_command(event.content)
            if command is not None:
                issue_number = int(payload["issue"]["number"])
                reply = await get_command_handler().handle(
                    command,
                    scope=event.scope,
                    author=event.identity,
                    author_role=role,
                    action_ref=action_ref(event.scope, issue_number),
                )
                if reply is not None:
                    return {"status": "accepted"}
        await get_engine().handle_action(
            ActionEvent(
                identity=event.identity,
                scope=event.scope,
                event_kind=event.event_kind,
                content=event.content,
                context=event.context,
                action_ref=event.action_ref,
                role=role,
            )
        )
    finally:
        obs_logging.reset_context(tokens)
    return {"status": "accepted"}
