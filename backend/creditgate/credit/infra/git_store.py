"""Ledger kept as files on a dedicated branch of a git repository.

The branch head commit is the version token. A write builds a new commit on
top of the expected head with plumbing commands and publishes it with
``git update-ref <ref> <new> <expected>``, which refuses to move the ref if
another writer got there first. The working tree is never touched.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Sequence

from creditgate.credit.domain.consistency import Mutation
from creditgate.credit.domain.errors import StoreUnavailable
from creditgate.credit.domain.models import Actor, ActorKey, CreditEvent

logger = logging.getLogger(__name__)

DATA_DIR = "credit-data"
CONTRIBUTORS_FILE = "contributors.json"
EVENTS_FILE = "events.jsonl"
_NULL_SHA = "0" * 40


class GitBranchStateStore:
    def __init__(
        self,
        path: str | Path,
        *,
        branch: str = "creditgate-data",
        author_name: str = "creditgate",
        author_email: str = "creditgate@users.noreply.github.com",
    ) -> None:
        self._path = Path(path)
        self._ref = f"refs/heads/{branch}"
        self._env = {
            **os.environ,
            "GIT_AUTHOR_NAME": author_name,
            "GIT_AUTHOR_EMAIL": author_email,
            "GIT_COMMITTER_NAME": author_name,
            "GIT_COMMITTER_EMAIL": author_email,
        }

    async def _git(self, *args: str, stdin: bytes | None = None, check: bool = True) -> tuple[int, bytes]:
        try:
            proc = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=str(self._path),
                env=self._env,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise StoreUnavailable(f"git unavailable: {exc}") from exc
        out, err = await proc.communicate(stdin)
        if check and proc.returncode != 0:
            raise StoreUnavailable(f"git {args[0]} failed: {err.decode(errors='replace').strip()}")
        return proc.returncode or 0, out

    async def ensure_repository(self) -> None:
        """Initialise a bare-bones repository at the path if there is none."""

        self._path.mkdir(parents=True, exist_ok=True)
        code, _ = await self._git("rev-parse", "--git-dir", check=False)
        if code != 0:
            await self._git("init", "-q")
            logger.info("git_store_initialised", extra={"path": str(self._path)})

    async def head(self) -> str | None:
        code, out = await self._git("rev-parse", "--verify", "-q", self._ref, check=False)
        if code != 0:
            return None
        return out.decode().strip()

    async def _read_file(self, commit: str | None, name: str) -> str:
        if commit is None:
            return ""
        code, out = await self._git("cat-file", "blob", f"{commit}:{DATA_DIR}/{name}", check=False)
        if code != 0:
            return ""
        return out.decode("utf-8")

    async def _contributors(self, commit: str | None) -> dict[str, Any]:
        text = await self._read_file(commit, CONTRIBUTORS_FILE)
        return json.loads(text) if text.strip() else {}

    async def _events(self, commit: str | None) -> list[CreditEvent]:
        text = await self._read_file(commit, EVENTS_FILE)
        return [CreditEvent.from_dict(json.loads(line)) for line in text.splitlines() if line.strip()]

    async def read(self, key: ActorKey) -> tuple[Actor | None, str | None]:
        commit = await self.head()
        if commit is None:
            return None, None
        row = (await self._contributors(commit)).get(str(key))
        return (Actor.from_dict(row) if row else None), commit

    async def write_if_version(self, key: ActorKey, mutation: Mutation, version: str | None) -> bool:
        contributors = await self._contributors(version)
        contributors[str(key)] = mutation.actor.to_dict()
        events_text = await self._read_file(version, EVENTS_FILE)
        if events_text and not events_text.endswith("\n"):
            events_text += "\n"
        events_text += "".join(json.dumps(event.to_dict(), sort_keys=True) + "\n" for event in mutation.events)

        contributors_blob = await self._hash(json.dumps(contributors, indent=2, sort_keys=True) + "\n")
        events_blob = await self._hash(events_text)
        data_tree = await self._mktree(
            f"100644 blob {contributors_blob}\t{CONTRIBUTORS_FILE}\n100644 blob {events_blob}\t{EVENTS_FILE}\n"
        )
        root_tree = await self._mktree(f"040000 tree {data_tree}\t{DATA_DIR}\n")

        kinds = ",".join(sorted({event.event_kind.value for event in mutation.events})) or "observe"
        args = ["commit-tree", root_tree, "-m", f"credit: {kinds} {key}"]
        if version is not None:
            args[2:2] = ["-p", version]
        _, out = await self._git(*args)
        commit = out.decode().strip()

        code, _ = await self._git("update-ref", self._ref, commit, version or _NULL_SHA, check=False)
        return code == 0

    async def _hash(self, text: str) -> str:
        _, out = await self._git("hash-object", "-w", "--stdin", stdin=text.encode("utf-8"))
        return out.decode().strip()

    async def _mktree(self, listing: str) -> str:
        _, out = await self._git("mktree", stdin=listing.encode("utf-8"))
        return out.decode().strip()

    async def get_actor(self, key: ActorKey) -> Actor | None:
        actor, _version = await self.read(key)
        return actor

    async def list_actors(self, scope: str, *, limit: int = 50, offset: int = 0) -> Sequence[Actor]:
        contributors = await self._contributors(await self.head())
        actors = [Actor.from_dict(row) for row in contributors.values() if row.get("scope") == scope]
        actors.sort(key=lambda actor: actor.identity)
        return actors[offset : offset + limit]

    async def list_events(self, key: ActorKey, *, limit: int | None = None, offset: int = 0) -> Sequence[CreditEvent]:
        events = [
            event
            for event in await self._events(await self.head())
            if event.identity == key.identity and event.scope == key.scope
        ]
        end = None if limit is None else offset + limit
        return events[offset:end]
