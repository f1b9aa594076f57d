import hashlib
import hmac
import json

import pytest

from creditgate.credit.api.webhooks import to_action_event, verify_signature
from creditgate.credit.domain import container
from creditgate.credit.domain.models import ActorKey, ActorRole
from creditgate.credit.domain.scoring import EventKind
from creditgate.settings import settings

REPO = {"full_name": "octo/widgets"}


class RecordingActions:
    def __init__(self, roles: dict[str, ActorRole] | None = None) -> None:
        self.roles = roles or {}
        self.comments: list[tuple[str, str]] = []

    async def deny_action(self, action_ref: str, message: str) -> None:
        return None

    async def post_comment(self, action_ref: str, message: str) -> None:
        self.comments.append((action_ref, message))

    async def get_role(self, identity: str, scope: str) -> ActorRole:
        return self.roles.get(identity, ActorRole.CONTRIBUTOR)


def pr_opened(login: str = "octocat", number: int = 7, body: str = "Implements the widget cache") -> dict:
    return {
        "action": "opened",
        "repository": REPO,
        "pull_request": {
            "number": number,
            "title": "Widget cache",
            "body": body,
            "user": {"login": login, "type": "User"},
            "additions": 40,
            "deletions": 2,
            "changed_files": 3,
        },
    }


def pr_comment(login: str, body: str, number: int = 7) -> dict:
    return {
        "action": "created",
        "repository": REPO,
        "issue": {"number": number, "title": "Widget cache", "pull_request": {"url": "https://example.test"}},
        "comment": {"body": body, "user": {"login": login, "type": "User"}},
    }


async def deliver(api_client, event: str, payload: dict, *, secret: str | None = None):
    body = json.dumps(payload).encode()
    headers = {"X-GitHub-Event": event, "Content-Type": "application/json"}
    if secret is not None:
        headers["X-Hub-Signature-256"] = "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return await api_client.post("/api/credit/v1/webhooks/github", content=body, headers=headers)


def test_signature_verification() -> None:
    body = b'{"zen": "keep it simple"}'
    good = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    assert verify_signature("s3cret", body, good)
    assert not verify_signature("other", body, good)
    assert not verify_signature("s3cret", body, None)
    assert not verify_signature("s3cret", body, "sha1=abc")


def test_payload_mapping() -> None:
    event = to_action_event("pull_request", pr_opened())
    assert event.event_kind is EventKind.PR_OPENED
    assert event.action_ref == "octo/widgets#7"
    assert event.context.diff_summary == "+40 -2 across 3 files"

    merged = pr_opened()
    merged.update(action="closed")
    merged["pull_request"]["merged"] = True
    assert to_action_event("pull_request", merged).event_kind is EventKind.PR_MERGED

    review = {
        "action": "submitted",
        "repository": REPO,
        "pull_request": {"title": "Widget cache"},
        "review": {"body": "Looks good", "user": {"login": "hubot", "type": "User"}},
    }
    assert to_action_event("pull_request_review", review).event_kind is EventKind.REVIEW_SUBMITTED

    bot = pr_opened(login="dependabot[bot]")
    bot["pull_request"]["user"]["type"] = "Bot"
    assert to_action_event("pull_request", bot) is None
    issue_only = pr_comment("octocat", "hi")
    del issue_only["issue"]["pull_request"]
    assert to_action_event("issue_comment", issue_only) is None
    assert to_action_event("push", {"repository": REPO}) is None


@pytest.mark.asyncio
async def test_rejects_bad_signature(api_client) -> None:
    settings.webhook_secret = "s3cret"
    resp = await deliver(api_client, "pull_request", pr_opened(), secret="wrong")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "invalid_signature"

    resp = await deliver(api_client, "ping", {"zen": "hi"}, secret="s3cret")
    assert resp.status_code == 200
    assert resp.json() == {"status": "pong"}


@pytest.mark.asyncio
async def test_requires_secret_in_production(api_client) -> None:
    settings.environment = "production"
    resp = await deliver(api_client, "ping", {})
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_untracked_events_are_ignored(api_client) -> None:
    resp = await deliver(api_client, "push", {"repository": REPO})
    assert resp.json() == {"status": "ignored"}


@pytest.mark.asyncio
async def test_opened_pull_request_is_scored(api_client) -> None:
    resp = await deliver(api_client, "pull_request", pr_opened())
    assert resp.status_code == 200
    assert resp.json() == {"status": "accepted"}

    await container.get_pipeline().drain()
    actor = await container.get_ledger().require(ActorKey("octocat", "octo/widgets"))
    assert actor.credit_score == 115


@pytest.mark.asyncio
async def test_maintainer_command_is_answered(api_client) -> None:
    actions = RecordingActions({"lead": ActorRole.MAINTAINER})
    container.configure(actions=actions)

    resp = await deliver(api_client, "issue_comment", pr_comment("lead", '/credit override @octocat -30 "spam"'))
    assert resp.status_code == 200

    assert actions.comments == [("octo/widgets#7", "Adjusted @octocat by -30: 100 -> 70.")]
    actor = await container.get_ledger().require(ActorKey("octocat", "octo/widgets"))
    assert actor.credit_score == 70


@pytest.mark.asyncio
async def test_contributor_command_is_evaluated_as_a_comment(api_client) -> None:
    actions = RecordingActions()
    container.configure(actions=actions)

    resp = await deliver(api_client, "issue_comment", pr_comment("mallory", "/credit blacklist @octocat"))
    assert resp.status_code == 200

    assert actions.comments == []
    assert await container.get_ledger().get(ActorKey("octocat", "octo/widgets")) is None

    await container.get_pipeline().drain()
    (entry,) = await container.get_review_queue().list("octo/widgets")
    assert entry.identity == "mallory"
    assert entry.event_kind is EventKind.COMMENT
