from __future__ import annotations

from dataclasses import asdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from board_model import ATTACHMENT_COMMIT
from board_model import ATTACHMENT_TYPES
from board_model import DEFAULT_TASK_STATUS
from board_model import INVITATION_ACCEPTED
from board_model import INVITATION_DECLINED
from board_model import INVITATION_PENDING
from board_model import BoardUpdate
from board_model import CardUpdate
from board_model import ConflictError
from board_model import ForbiddenError
from board_model import NotFoundError
from board_model import TaskUpdate
from board_model import UserUpdate
from board_model import ValidationError
from board_model import check_deadline
from board_model import check_priority
from board_model import check_status
from board_model import clean_description
from board_model import clean_name
from board_model import format_ts
from board_model import unique_ids
from doc_ids import new_doc_id
from document_store import BOARDS
from document_store import CARDS
from document_store import GITHUB_ATTACHMENTS
from document_store import INVITATIONS
from document_store import TASKS
from document_store import USERS
from document_store import DuplicateDocumentError
from document_store import MissingDocumentError


@dataclass
class CascadeReport:
    cards: int = 0
    tasks: int = 0
    attachments: int = 0
    invitations: int = 0

    def merge(self, other: "CascadeReport") -> "CascadeReport":
        self.cards += other.cards
        self.tasks += other.tasks
        self.attachments += other.attachments
        self.invitations += other.invitations
        return self

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BoardRepository:
    """Board / card / task hierarchy on top of a document store.

    The store is injected (``DynamoDocumentStore`` in Lambda, an in-memory
    fake in tests). Instances are request scoped: ``warnings`` collects
    non-fatal anomalies for the caller to log.

    Cascading deletes fail fast on the first store error and remove the
    parent last. Every step tolerates targets that are already gone, so
    re-running a failed delete finishes the job without double counting.
    """

    def __init__(self, store: Any, *, clock: Callable[[], datetime] | None = None) -> None:
        self._store = store
        self._clock = clock or _utcnow
        self.warnings: list[dict[str, Any]] = []

    def _stamp(self) -> tuple[str, int]:
        now = self._clock()
        return format_ts(now), int(now.timestamp() * 1000)

    def _warn(self, warning: str, **fields: Any) -> None:
        self.warnings.append({"warning": warning, **fields})

    def _require(self, collection: str, kind: str, entity_id: str) -> dict[str, Any]:
        doc = self._store.get(collection, entity_id)
        if doc is None:
            raise NotFoundError(kind, entity_id)
        return doc

    def _update(self, collection: str, kind: str, entity_id: str, changes: dict[str, Any], remove=()) -> dict[str, Any]:
        if not changes and not remove:
            return self._require(collection, kind, entity_id)
        ts, _ = self._stamp()
        try:
            return self._store.update(collection, entity_id, {**changes, "updatedAt": ts}, remove=tuple(remove))
        except MissingDocumentError as e:
            raise NotFoundError(kind, entity_id) from e

    # Users

    def create_user(
        self,
        user_id: str,
        email: str,
        display_name: str | None = None,
        photo_url: str | None = None,
    ) -> dict[str, Any]:
        email_norm = str(email or "").strip().lower()
        if not user_id:
            raise ValidationError("user id is required")
        if "@" not in email_norm:
            raise ValidationError(f"invalid email: {email}")
        existing = self.find_user_by_email(email_norm)
        if existing is not None and existing.get("id") != user_id:
            raise ConflictError(f"email already registered: {email_norm}")
        ts, _ = self._stamp()
        doc: dict[str, Any] = {
            "id": user_id,
            "email": email_norm,
            "displayName": clean_name(display_name or email_norm.split("@", 1)[0], "displayName"),
            "createdAt": ts,
            "updatedAt": ts,
        }
        if photo_url:
            doc["photoURL"] = str(photo_url)
        try:
            return self._store.create(USERS, doc)
        except DuplicateDocumentError as e:
            raise ConflictError(f"user already exists: {user_id}") from e

    def get_or_create_user(self, user_id: str, email: str, display_name: str | None = None) -> dict[str, Any]:
        existing = self._store.get(USERS, user_id)
        if existing is not None:
            return existing
        return self.create_user(user_id, email, display_name)

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        return self._store.get(USERS, user_id)

    def list_users(self) -> list[dict[str, Any]]:
        return sorted(self._store.scan_all(USERS), key=lambda u: str(u.get("email") or ""))

    def find_user_by_email(self, email: str) -> dict[str, Any] | None:
        email_norm = str(email or "").strip().lower()
        if not email_norm:
            return None
        matches = self._store.query(USERS, "email", email_norm)
        return matches[0] if matches else None

    def update_user(self, user_id: str, update: UserUpdate) -> dict[str, Any]:
        return self._update(USERS, "user", user_id, update.changes())

    def link_github(
        self,
        user_id: str,
        *,
        github_id: int,
        github_login: str,
        access_token: str,
        photo_url: str | None = None,
    ) -> dict[str, Any]:
        changes: dict[str, Any] = {
            "githubId": int(github_id),
            "githubLogin": str(github_login),
            "githubAccessToken": str(access_token),
        }
        if photo_url:
            changes["photoURL"] = str(photo_url)
        return self._update(USERS, "user", user_id, changes)

    # Boards

    def create_board(self, name: str, description: str | None, owner_id: str) -> str:
        if not owner_id:
            raise ValidationError("ownerId is required")
        ts, ms = self._stamp()
        board_id = new_doc_id(ms)
        self._store.create(
            BOARDS,
            {
                "id": board_id,
                "name": clean_name(name, "name"),
                "description": clean_description(description),
                "ownerId": owner_id,
                "members": [owner_id],
                "createdAt": ts,
                "updatedAt": ts,
            },
        )
        return board_id

    def get_board(self, board_id: str) -> dict[str, Any] | None:
        return self._store.get(BOARDS, board_id)

    def require_board(self, board_id: str) -> dict[str, Any]:
        return self._require(BOARDS, "board", board_id)

    def member_board(self, board_id: str, user_id: str) -> dict[str, Any]:
        board = self.require_board(board_id)
        if user_id not in (board.get("members") or []):
            raise ForbiddenError(f"not a member of board: {board_id}")
        return board

    def card_in_board(self, board: dict[str, Any], card_id: str) -> dict[str, Any]:
        card = self.get_card(card_id)
        if card is None or card.get("boardId") != board.get("id"):
            raise NotFoundError("card", card_id)
        return card

    def task_in_card(self, card: dict[str, Any], task_id: str) -> dict[str, Any]:
        task = self.get_task(task_id)
        if task is None or task.get("cardId") != card.get("id"):
            raise NotFoundError("task", task_id)
        return task

    def list_user_boards(self, user_id: str) -> list[dict[str, Any]]:
        boards = self._store.scan_contains(BOARDS, "members", user_id)
        return sorted(boards, key=lambda b: str(b.get("createdAt") or ""), reverse=True)

    def update_board(self, board_id: str, update: BoardUpdate) -> dict[str, Any]:
        return self._update(BOARDS, "board", board_id, update.changes())

    def delete_board(self, board_id: str) -> CascadeReport:
        report = CascadeReport()
        for card in self._store.query(CARDS, "boardId", board_id):
            report.merge(self.delete_card(str(card["id"])))
        # Tasks created against a card that no longer existed.
        for task in self._store.query(TASKS, "boardId", board_id):
            report.merge(self.delete_task(str(task["id"])))
        for inv in self._store.query(INVITATIONS, "boardId", board_id):
            if self._store.delete(INVITATIONS, str(inv["id"])) is not None:
                report.invitations += 1
        self._store.delete(BOARDS, board_id)
        return report

    # Cards

    def create_card(self, board_id: str, name: str, description: str | None, owner_id: str) -> str:
        self.require_board(board_id)
        ts, ms = self._stamp()
        card_id = new_doc_id(ms)
        self._store.create(
            CARDS,
            {
                "id": card_id,
                "boardId": board_id,
                "name": clean_name(name, "name"),
                "description": clean_description(description),
                "ownerId": owner_id,
                "members": [owner_id],
                "tasksCount": 0,
                "createdAt": ts,
                "updatedAt": ts,
            },
        )
        return card_id

    def get_card(self, card_id: str) -> dict[str, Any] | None:
        return self._store.get(CARDS, card_id)

    def list_board_cards(self, board_id: str) -> list[dict[str, Any]]:
        return self._store.query(CARDS, "boardId", board_id, descending=True)

    def list_user_cards(self, user_id: str) -> list[dict[str, Any]]:
        cards = self._store.scan_contains(CARDS, "members", user_id)
        return sorted(cards, key=lambda c: str(c.get("createdAt") or ""), reverse=True)

    def update_card(self, card_id: str, update: CardUpdate) -> dict[str, Any]:
        return self._update(CARDS, "card", card_id, update.changes())

    def delete_card(self, card_id: str) -> CascadeReport:
        report = CascadeReport()
        for task in self._store.query(TASKS, "cardId", card_id):
            report.merge(self.delete_task(str(task["id"])))
        if self._store.delete(CARDS, card_id) is not None:
            report.cards += 1
        return report

    # Tasks

    def create_task(
        self,
        board_id: str,
        card_id: str,
        title: str,
        description: str | None,
        owner_id: str,
        status: str = DEFAULT_TASK_STATUS,
        *,
        priority: str | None = None,
        deadline: str | None = None,
        assigned_to: list[str] | tuple[str, ...] = (),
    ) -> str:
        if not board_id or not card_id:
            raise ValidationError("boardId and cardId are required")
        assignees = unique_ids(list(assigned_to), "assignedTo")
        self._check_assignees(board_id, assignees)
        ts, ms = self._stamp()
        task_id = new_doc_id(ms)
        doc: dict[str, Any] = {
            "id": task_id,
            "boardId": board_id,
            "cardId": card_id,
            "title": clean_name(title, "title"),
            "description": clean_description(description),
            "status": check_status(status),
            "ownerId": owner_id,
            "assignedTo": assignees,
            "order": ms,
            "createdAt": ts,
            "updatedAt": ts,
        }
        if priority is not None:
            doc["priority"] = check_priority(priority)
        if deadline is not None:
            doc["deadline"] = check_deadline(deadline)
        counted = self._store.create_and_increment(
            TASKS,
            doc,
            counter_collection=CARDS,
            counter_key=card_id,
            counter_field="tasksCount",
        )
        if not counted:
            self._warn("task_counter_skipped", cardId=card_id, taskId=task_id)
        return task_id

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        return self._store.get(TASKS, task_id)

    def list_card_tasks(self, card_id: str) -> list[dict[str, Any]]:
        return self._store.query(TASKS, "cardId", card_id)

    def _check_assignees(self, board_id: str, user_ids: list[str]) -> None:
        if not user_ids:
            return
        members = set((self.get_board(board_id) or {}).get("members") or [])
        outsiders = [u for u in user_ids if u not in members]
        if outsiders:
            raise ValidationError(f"assignees are not board members: {', '.join(outsiders)}")

    def update_task(self, task_id: str, update: TaskUpdate) -> dict[str, Any]:
        changes = update.changes()
        remove = update.removals()
        if changes.get("assignedTo"):
            task = self._require(TASKS, "task", task_id)
            self._check_assignees(str(task.get("boardId") or ""), changes["assignedTo"])
        return self._update(TASKS, "task", task_id, changes, remove)

    def delete_task(self, task_id: str) -> CascadeReport:
        report = CascadeReport()
        task = self._store.get(TASKS, task_id)
        if task is None:
            return report

        for att in self._store.query(GITHUB_ATTACHMENTS, "taskId", task_id):
            if self._store.delete(GITHUB_ATTACHMENTS, str(att["id"])) is not None:
                report.attachments += 1

        card_id = str(task.get("cardId") or "")
        if card_id:
            decremented = self._store.delete_and_decrement(
                TASKS,
                task_id,
                counter_collection=CARDS,
                counter_key=card_id,
                counter_field="tasksCount",
            )
            if not decremented:
                self._warn("task_counter_not_decremented", cardId=card_id, taskId=task_id)
        else:
            self._store.delete(TASKS, task_id)
        report.tasks += 1
        return report

    # Invitations

    def create_invitation(self, board_id: str, inviter_id: str, member_id: str, member_email: str) -> str:
        board = self.require_board(board_id)
        if board.get("ownerId") != inviter_id:
            raise ForbiddenError("only the board owner can invite members")
        if not member_id:
            raise ValidationError("memberId is required")
        if member_id in (board.get("members") or []):
            raise ValidationError(f"user is already a board member: {member_id}")
        for inv in self._store.query(INVITATIONS, "memberId", member_id):
            if inv.get("boardId") == board_id and inv.get("status") == INVITATION_PENDING:
                raise ValidationError(f"invitation already pending for user: {member_id}")

        ts, ms = self._stamp()
        invitation_id = new_doc_id(ms)
        self._store.create(
            INVITATIONS,
            {
                "id": invitation_id,
                "boardId": board_id,
                "boardOwnerId": inviter_id,
                "memberId": member_id,
                "memberEmail": str(member_email or "").strip().lower(),
                "status": INVITATION_PENDING,
                "createdAt": ts,
                "updatedAt": ts,
            },
        )
        return invitation_id

    def get_invitation(self, invitation_id: str) -> dict[str, Any] | None:
        return self._store.get(INVITATIONS, invitation_id)

    def list_user_invitations(self, user_id: str) -> list[dict[str, Any]]:
        invitations = self._store.query(INVITATIONS, "memberId", user_id)
        pending = [i for i in invitations if i.get("status") == INVITATION_PENDING]
        return sorted(pending, key=lambda i: str(i.get("createdAt") or ""), reverse=True)

    def accept_invitation(self, invitation_id: str) -> dict[str, Any]:
        inv = self._require(INVITATIONS, "invitation", invitation_id)
        status = inv.get("status")
        if status == INVITATION_DECLINED:
            raise ValidationError(f"invitation already declined: {invitation_id}")
        board_id = str(inv.get("boardId") or "")
        self.require_board(board_id)

        if status == INVITATION_PENDING:
            inv = self._update(INVITATIONS, "invitation", invitation_id, {"status": INVITATION_ACCEPTED})
        try:
            added = self._store.append_unique(BOARDS, board_id, "members", str(inv["memberId"]))
        except MissingDocumentError as e:
            raise NotFoundError("board", board_id) from e
        if not added:
            self._warn("member_already_present", boardId=board_id, memberId=inv["memberId"])
        return inv

    def decline_invitation(self, invitation_id: str) -> dict[str, Any]:
        inv = self._require(INVITATIONS, "invitation", invitation_id)
        status = inv.get("status")
        if status == INVITATION_ACCEPTED:
            raise ValidationError(f"invitation already accepted: {invitation_id}")
        if status == INVITATION_DECLINED:
            return inv
        return self._update(INVITATIONS, "invitation", invitation_id, {"status": INVITATION_DECLINED})

    # GitHub attachments

    def create_attachment(
        self,
        task_id: str,
        *,
        attachment_type: str,
        number: int | None = None,
        sha: str | None = None,
        title: str | None = None,
        url: str | None = None,
        created_by: str,
    ) -> dict[str, Any]:
        kind = str(attachment_type or "").strip()
        if kind not in ATTACHMENT_TYPES:
            raise ValidationError(f"invalid attachment type: {attachment_type} (expected one of {', '.join(ATTACHMENT_TYPES)})")
        if kind == ATTACHMENT_COMMIT:
            if not str(sha or "").strip():
                raise ValidationError("sha is required for commit attachments")
        else:
            try:
                number = int(number)  # type: ignore[arg-type]
            except (TypeError, ValueError) as e:
                raise ValidationError(f"number is required for {kind} attachments") from e
        task = self._require(TASKS, "task", task_id)

        ts, ms = self._stamp()
        doc: dict[str, Any] = {
            "id": new_doc_id(ms),
            "taskId": task_id,
            "cardId": str(task.get("cardId") or ""),
            "boardId": str(task.get("boardId") or ""),
            "type": kind,
            "title": str(title or ""),
            "url": str(url or ""),
            "createdBy": created_by,
            "createdAt": ts,
        }
        if kind == ATTACHMENT_COMMIT:
            doc["sha"] = str(sha).strip()
        else:
            doc["number"] = number
        return self._store.create(GITHUB_ATTACHMENTS, doc)

    def get_attachment(self, attachment_id: str) -> dict[str, Any] | None:
        return self._store.get(GITHUB_ATTACHMENTS, attachment_id)

    def list_task_attachments(self, task_id: str) -> list[dict[str, Any]]:
        attachments = self._store.query(GITHUB_ATTACHMENTS, "taskId", task_id)
        return sorted(attachments, key=lambda a: str(a.get("createdAt") or ""))

    def delete_attachment(self, attachment_id: str) -> bool:
        return self._store.delete(GITHUB_ATTACHMENTS, attachment_id) is not None
