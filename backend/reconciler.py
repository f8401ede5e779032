# reconciler.py — Board Reconciler: turns one normalized event into targeted card mutations
#
# Per card the engine moves between: absent -> present (unlinked) when a
# push / PR creates it, present -> linked when a commit or PR mentions it
# (annotation only, never a column change), and -> done when a PR is
# merged/closed or CI succeeds with auto-close enabled.
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from board_store import (
    AddReference, BoardPatch, BoardSnapshot, BoardStore, CardDraft,
    MoveCard, PushCard, ReferenceEntry, SetCardFields, UpsertCard,
)
from errors import NotFoundError, TransientUpstreamError
from github_client import GitHubClient
from github_events import (
    BranchCreateEvent, NormalizedEvent, PullRequestEvent, PushEvent, StatusEvent,
)
from integration_registry import IntegrationRecord
from models import BoardList, CardType, new_uuid
from realtime import BroadcastSink, DEPLOYMENT_LOG, DEPLOYMENT_STATUS, KANBAN_UPDATE
from task_references import TaskReference, matches_task_reference, parse_task_references
from telemetry import get_tracer

logger = logging.getLogger("taskforge.reconciler")
tracer = get_tracer("taskforge.reconciler")

PR_STATE_TO_LIST = {
    "open": BoardList.DOING.value,
    "merged": BoardList.DONE.value,
    "closed": BoardList.DONE.value,
}

CI_TO_DEPLOYMENT_STATE = {
    "success": "success",
    "failure": "failure",
    "pending": "running",
}

CI_TO_LOG_LEVEL = {
    "success": "success",
    "failure": "error",
    "error": "error",
}


@dataclass
class ReconcileResult:
    event: str
    board_id: str
    created: List[str] = field(default_factory=list)
    annotated: List[str] = field(default_factory=list)
    moved: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    changed: int = 0

    @property
    def processed(self) -> bool:
        return self.changed > 0


def _has_reference(card: dict, source_type: str, key) -> bool:
    for entry in card.get("metadata", {}).get("referencedIn", []):
        if entry.get("type") != source_type:
            continue
        if source_type == "commit" and entry.get("sha") == key:
            return True
        if source_type == "pull_request" and str(entry.get("number")) == str(key):
            return True
    return False


def _now_ms() -> int:
    return int(time.time() * 1000)


class BoardReconciler:
    """Computes and applies the card mutations for one webhook delivery.

    Collaborators are passed in: the store is bound to the request's
    session, the sink and the GitHub client live for the whole process.
    """

    def __init__(self, store: BoardStore, sink: BroadcastSink, github: Optional[GitHubClient] = None):
        self.store = store
        self.sink = sink
        self.github = github

    async def reconcile(self, event: NormalizedEvent, integration: IntegrationRecord) -> ReconcileResult:
        with tracer.start_as_current_span(f"reconcile {event.kind}") as span:
            span.set_attribute("taskforge.board_id", integration.board_id)
            span.set_attribute("taskforge.repository", f"{integration.repo_owner}/{integration.repo_name}")
            result = await self._reconcile(event, integration)
            span.set_attribute("taskforge.changed", result.changed)
            return result

    async def _reconcile(self, event: NormalizedEvent, integration: IntegrationRecord) -> ReconcileResult:
        board_id = integration.board_id
        result = ReconcileResult(event=event.kind, board_id=board_id)

        snapshot = await self.store.find_one(board_id)
        if snapshot is None:
            raise NotFoundError("Board not found", code="board_not_found")

        ops: List[BoardPatch] = []
        if isinstance(event, PushEvent):
            ops = await self._plan_push(event, integration, snapshot, result)
        elif isinstance(event, PullRequestEvent):
            ops = self._plan_pull_request(event, integration, snapshot, result)
        elif isinstance(event, StatusEvent):
            ops = self._plan_status(event, integration, snapshot, result)
        elif isinstance(event, BranchCreateEvent):
            logger.info(f"Branch created: {event.branch} board={board_id[:8]}")

        if ops:
            result.changed = await self.store.update_one(board_id, ops)

        if result.changed:
            fresh = await self.store.find_one(board_id)
            if fresh is not None:
                await self.sink.emit(board_id, KANBAN_UPDATE, fresh.to_payload())

        await self._emit_deployment_feed(event, integration)

        logger.info(
            f"Reconciled {event.kind} board={board_id[:8]} changed={result.changed} "
            f"created={len(result.created)} annotated={len(result.annotated)} moved={len(result.moved)}"
        )
        return result

    # ------------------------------------------------------------
    # push
    # ------------------------------------------------------------

    def _annotate(
        self,
        refs: List[TaskReference],
        snapshot: BoardSnapshot,
        source_type: str,
        source_key,
        entry_for,
        result: ReconcileResult,
        exclude_card: Optional[str] = None,
    ) -> Tuple[List[BoardPatch], bool]:
        """AddReference ops for every existing card a reference points at."""
        ops: List[BoardPatch] = []
        matched = False
        for ref in refs:
            for _, card in snapshot.cards():
                if card["id"] == exclude_card or not matches_task_reference(card["id"], ref):
                    continue
                matched = True
                if not _has_reference(card, source_type, source_key):
                    ops.append(AddReference(card["id"], entry_for(ref)))
                    result.annotated.append(card["id"])
                break
        return ops, matched

    async def _plan_push(
        self,
        event: PushEvent,
        integration: IntegrationRecord,
        snapshot: BoardSnapshot,
        result: ReconcileResult,
    ) -> List[BoardPatch]:
        refs = parse_task_references(event.message, "commit", event.html_url, event.sha)
        ops, matched = self._annotate(
            refs, snapshot, "commit", event.sha,
            lambda ref: ReferenceEntry(
                source_type="commit",
                source_key=event.sha,
                url=event.html_url,
                message=event.headline[:100],
                context=ref.context,
            ),
            result,
        )

        if matched or not integration.auto_create_cards:
            return ops

        # A redelivered push must not create a second card for the same commit
        for _, card in snapshot.cards():
            meta = card.get("metadata", {})
            if meta.get("type") == CardType.COMMIT.value and meta.get("sha") == event.sha:
                return ops

        branch = event.branch
        card = CardDraft(
            card_id=new_uuid(),
            title=f"Commit: {event.headline[:50]}",
            description=f"Branch: {branch or 'main'}\nSHA: {event.short_sha}\n\n{event.message}",
            card_type=CardType.COMMIT.value,
            sha=event.sha,
            branch=branch,
            url=event.html_url,
            ci_status=await self._initial_ci_status(integration, event.sha),
        )
        ops.append(PushCard(integration.column_for_branch(branch), card))
        result.created.append(card.card_id)
        return ops

    async def _initial_ci_status(self, integration: IntegrationRecord, sha: str) -> Optional[dict]:
        if self.github is None or not integration.access_token:
            return None
        try:
            statuses = await self.github.get_ci_status(
                integration.repo_owner, integration.repo_name, sha, integration.access_token
            )
        except TransientUpstreamError as e:
            logger.warning(f"CI status enrichment skipped for {sha[:7]}: {e.message}")
            return None
        return statuses[0].to_dict() if statuses else None

    # ------------------------------------------------------------
    # pull_request
    # ------------------------------------------------------------

    def _plan_pull_request(
        self,
        event: PullRequestEvent,
        integration: IntegrationRecord,
        snapshot: BoardSnapshot,
        result: ReconcileResult,
    ) -> List[BoardPatch]:
        card_id = f"pr-{event.number}"
        refs = parse_task_references(
            f"{event.title}\n{event.body}", "pull_request", event.html_url, event.head_sha
        )
        ops, _ = self._annotate(
            refs, snapshot, "pull_request", event.number,
            lambda ref: ReferenceEntry(
                source_type="pull_request",
                source_key=str(event.number),
                url=event.html_url,
                title=event.title,
                context=ref.context,
            ),
            result,
            exclude_card=card_id,
        )

        draft = CardDraft(
            card_id=card_id,
            title=f"PR #{event.number}: {event.title}",
            description=f"Branch: {event.head_ref} → {event.base_ref}\nState: {event.state}\n{event.body}",
            card_type=CardType.PULL_REQUEST.value,
            pr_number=event.number,
            pr_state=event.state,
            branch=event.head_ref or None,
            url=event.html_url or None,
        )
        target = PR_STATE_TO_LIST.get(event.state)

        existing = snapshot.find_card(card_id)
        if existing is None:
            if integration.auto_create_cards:
                ops.append(UpsertCard(target or BoardList.TODO.value, draft))
                result.created.append(card_id)
            return ops

        current_list, card = existing
        target = target or current_list
        meta = card.get("metadata", {})
        unchanged = (
            target == current_list
            and card.get("title") == draft.title
            and card.get("description") == draft.description
            and meta.get("state") == draft.pr_state
            and meta.get("branch") == draft.branch
            and meta.get("url") == draft.url
            and meta.get("type") == draft.card_type
        )
        if not unchanged:
            ops.append(UpsertCard(target, draft))
            if target != current_list:
                result.moved.append(card_id)
            else:
                result.updated.append(card_id)
        return ops

    # ------------------------------------------------------------
    # status
    # ------------------------------------------------------------

    def _plan_status(
        self,
        event: StatusEvent,
        integration: IntegrationRecord,
        snapshot: BoardSnapshot,
        result: ReconcileResult,
    ) -> List[BoardPatch]:
        ops: List[BoardPatch] = []
        ci_status = event.ci_status()
        close = event.state == "success" and integration.auto_close_cards
        for list_name, card in snapshot.cards():
            if card.get("metadata", {}).get("sha") != event.sha:
                continue
            if close and list_name != BoardList.DONE.value:
                ops.append(MoveCard(card["id"], BoardList.DONE.value, {"ci_status": ci_status}))
                result.moved.append(card["id"])
            elif card["metadata"].get("ciStatus") != ci_status:
                ops.append(SetCardFields(card["id"], {"ci_status": ci_status}))
                result.updated.append(card["id"])
        return ops

    # ------------------------------------------------------------
    # deployment feed
    # ------------------------------------------------------------

    async def _emit_deployment_feed(self, event: NormalizedEvent, integration: IntegrationRecord):
        board_id = integration.board_id
        if isinstance(event, StatusEvent):
            await self.sink.emit(board_id, DEPLOYMENT_STATUS, {
                "state": CI_TO_DEPLOYMENT_STATE.get(event.state, "pending"),
                "pipeline": event.context,
                "version": event.short_sha,
                "timestamp": _now_ms(),
            })
            await self.sink.emit(board_id, DEPLOYMENT_LOG, {
                "level": CI_TO_LOG_LEVEL.get(event.state, "info"),
                "message": f"CI/CD {event.context}: {event.description or event.state}",
                "timestamp": _now_ms(),
                "context": event.short_sha,
            })
        elif isinstance(event, PushEvent) and integration.auto_create_cards:
            await self.sink.emit(board_id, DEPLOYMENT_LOG, {
                "level": "info",
                "message": f"Push received on {event.branch or 'main'}: {event.headline[:50]}",
                "timestamp": _now_ms(),
                "context": event.short_sha,
            })
