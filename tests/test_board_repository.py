from datetime import datetime, timedelta, timezone

import pytest

from store_fakes import MemoryDocumentStore

from board_model import ForbiddenError
from board_model import NotFoundError
from board_model import TaskUpdate
from board_model import ValidationError
from board_model import BoardUpdate
from board_model import ConflictError
from board_repository import BoardRepository
from document_store import StoreError


class TickingClock:
    def __init__(self):
        self.now = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(milliseconds=1)
        return self.now


def _repo(store=None):
    store = store or MemoryDocumentStore()
    return BoardRepository(store, clock=TickingClock()), store


def _counter(store, card_id):
    return store.docs["cards"][card_id]["tasksCount"]


def _tasks_of(store, card_id):
    return [t for t in store.docs["tasks"].values() if t["cardId"] == card_id]


def test_board_card_task_scenario():
    repo, store = _repo()
    board_id = repo.create_board("Roadmap", "Q3", "u-1")
    card_id = repo.create_card(board_id, "Backend", None, "u-1")

    first = repo.create_task(board_id, card_id, "Schema", "", "u-1")
    second = repo.create_task(board_id, card_id, "API", "", "u-1", "ongoing", priority="high")

    assert _counter(store, card_id) == 2
    tasks = repo.list_card_tasks(card_id)
    assert [t["id"] for t in tasks] == [first, second]
    assert tasks[0]["status"] == "icebox"
    assert tasks[1]["priority"] == "high"

    repo.delete_task(first)
    assert _counter(store, card_id) == 1

    report = repo.delete_board(board_id)
    assert report.as_dict() == {"cards": 1, "tasks": 1, "attachments": 0, "invitations": 0}
    assert store.docs["boards"] == {}
    assert store.docs["cards"] == {}
    assert store.docs["tasks"] == {}


def test_new_board_lists_owner_as_only_member():
    repo, _store = _repo()
    board_id = repo.create_board("Solo", None, "u-1")
    board = repo.get_board(board_id)
    assert board["members"] == ["u-1"]
    assert board["ownerId"] == "u-1"
    assert repo.list_user_boards("u-1")[0]["id"] == board_id
    assert repo.list_user_boards("u-2") == []


def test_boards_listed_newest_first():
    repo, _store = _repo()
    older = repo.create_board("Old", None, "u-1")
    newer = repo.create_board("New", None, "u-1")
    assert [b["id"] for b in repo.list_user_boards("u-1")] == [newer, older]


def test_create_card_requires_existing_board():
    repo, _store = _repo()
    with pytest.raises(NotFoundError, match="board not found: nope"):
        repo.create_card("nope", "Card", None, "u-1")


def test_create_task_on_missing_card_skips_counter():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    task_id = repo.create_task(board_id, "ghost-card", "Orphan", None, "u-1")

    assert task_id in store.docs["tasks"]
    assert repo.warnings == [
        {"warning": "task_counter_skipped", "cardId": "ghost-card", "taskId": task_id}
    ]


def test_failed_task_write_leaves_no_uncounted_task():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    card_id = repo.create_card(board_id, "C", None, "u-1")
    store.fail_next("create_and_increment", "tasks")

    with pytest.raises(StoreError, match="injected"):
        repo.create_task(board_id, card_id, "Lost", None, "u-1")

    assert _tasks_of(store, card_id) == []
    assert _counter(store, card_id) == 0

    repo.create_task(board_id, card_id, "Retried", None, "u-1")
    assert len(_tasks_of(store, card_id)) == _counter(store, card_id) == 1
    assert repo.warnings == []


def test_create_task_validates_fields():
    repo, _store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    card_id = repo.create_card(board_id, "C", None, "u-1")
    with pytest.raises(ValidationError, match="invalid status"):
        repo.create_task(board_id, card_id, "T", None, "u-1", "todo")
    with pytest.raises(ValidationError, match="title is required"):
        repo.create_task(board_id, card_id, " ", None, "u-1")
    with pytest.raises(ValidationError, match="not board members: u-9"):
        repo.create_task(board_id, card_id, "T", None, "u-1", assigned_to=["u-9"])


def test_delete_missing_task_is_noop():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    card_id = repo.create_card(board_id, "C", None, "u-1")
    repo.create_task(board_id, card_id, "T", None, "u-1")

    report = repo.delete_task("does-not-exist")

    assert report.tasks == 0
    assert _counter(store, card_id) == 1


def test_counter_matches_task_count_after_mixed_operations():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    card_id = repo.create_card(board_id, "C", None, "u-1")
    ids = [repo.create_task(board_id, card_id, f"T{i}", None, "u-1") for i in range(5)]
    repo.delete_task(ids[1])
    repo.delete_task(ids[1])
    repo.delete_task(ids[3])
    repo.create_task(board_id, card_id, "T5", None, "u-1")

    assert _counter(store, card_id) == len(_tasks_of(store, card_id)) == 4


def test_counter_never_goes_negative():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    card_id = repo.create_card(board_id, "C", None, "u-1")
    task_id = repo.create_task(board_id, card_id, "T", None, "u-1")
    store.docs["cards"][card_id]["tasksCount"] = 0

    repo.delete_task(task_id)

    assert _counter(store, card_id) == 0
    assert task_id not in store.docs["tasks"]
    assert repo.warnings[-1]["warning"] == "task_counter_not_decremented"


def test_delete_card_removes_tasks_and_attachments():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    card_id = repo.create_card(board_id, "C", None, "u-1")
    task_id = repo.create_task(board_id, card_id, "T", None, "u-1")
    repo.create_attachment(task_id, attachment_type="pull_request", number=7, created_by="u-1")
    repo.create_attachment(task_id, attachment_type="commit", sha="abc123", created_by="u-1")

    report = repo.delete_card(card_id)

    assert report.as_dict() == {"cards": 1, "tasks": 1, "attachments": 2, "invitations": 0}
    assert store.docs["github_attachments"] == {}
    assert store.docs["tasks"] == {}


def test_delete_board_leaves_no_descendants():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    other_board = repo.create_board("Other", None, "u-1")
    for n in range(2):
        card_id = repo.create_card(board_id, f"C{n}", None, "u-1")
        repo.create_task(board_id, card_id, "T", None, "u-1")
    keep_card = repo.create_card(other_board, "Keep", None, "u-1")
    keep_task = repo.create_task(other_board, keep_card, "Keep", None, "u-1")
    repo.create_task(board_id, "missing-card", "Orphan", None, "u-1")
    store.seed("users", {"id": "u-2", "email": "b@example.com"})
    repo.create_invitation(board_id, "u-1", "u-2", "b@example.com")

    report = repo.delete_board(board_id)

    assert report.cards == 2
    assert report.tasks == 3
    assert report.invitations == 1
    assert board_id not in store.docs["boards"]
    assert all(c["boardId"] != board_id for c in store.docs["cards"].values())
    assert all(t["boardId"] != board_id for t in store.docs["tasks"].values())
    assert store.docs["invitations"] == {}
    assert keep_task in store.docs["tasks"]
    assert _counter(store, keep_card) == 1


def test_failed_cascade_can_be_retried_to_a_clean_state():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    card_id = repo.create_card(board_id, "C", None, "u-1")
    for n in range(3):
        repo.create_task(board_id, card_id, f"T{n}", None, "u-1")
    store.fail_next("delete_and_decrement", "tasks")

    with pytest.raises(StoreError, match="injected"):
        repo.delete_board(board_id)
    assert board_id in store.docs["boards"]

    repo.delete_board(board_id)

    assert store.docs["boards"] == {}
    assert store.docs["cards"] == {}
    assert store.docs["tasks"] == {}


def test_partial_card_delete_keeps_counter_consistent():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    card_id = repo.create_card(board_id, "C", None, "u-1")
    for n in range(3):
        repo.create_task(board_id, card_id, f"T{n}", None, "u-1")
    store.fail_next("delete", "cards")

    with pytest.raises(StoreError):
        repo.delete_card(card_id)

    assert _tasks_of(store, card_id) == []
    assert _counter(store, card_id) == 0


def test_update_task_sets_and_clears_fields():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    card_id = repo.create_card(board_id, "C", None, "u-1")
    task_id = repo.create_task(board_id, card_id, "T", None, "u-1", priority="low", deadline="2026-06-01T00:00:00Z")

    updated = repo.update_task(task_id, TaskUpdate.from_payload({"status": "done", "priority": None}))

    assert updated["status"] == "done"
    assert "priority" not in updated
    assert updated["deadline"] == "2026-06-01T00:00:00.000000Z"
    assert updated["updatedAt"] > updated["createdAt"]
    assert store.docs["tasks"][task_id]["status"] == "done"


def test_update_missing_board_is_not_found():
    repo, _store = _repo()
    with pytest.raises(NotFoundError, match="board not found: b-x"):
        repo.update_board("b-x", BoardUpdate(name="New"))


def test_member_board_rejects_outsiders():
    repo, _store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    with pytest.raises(ForbiddenError):
        repo.member_board(board_id, "u-2")


def test_card_in_board_hides_cards_of_other_boards():
    repo, _store = _repo()
    b1 = repo.create_board("B1", None, "u-1")
    b2 = repo.create_board("B2", None, "u-1")
    card_id = repo.create_card(b2, "C", None, "u-1")
    with pytest.raises(NotFoundError, match="card not found"):
        repo.card_in_board(repo.get_board(b1), card_id)


def test_invitation_accept_adds_member_once():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    inv_id = repo.create_invitation(board_id, "u-1", "u-2", "B@Example.com")

    assert repo.list_user_invitations("u-2")[0]["memberEmail"] == "b@example.com"
    first = repo.accept_invitation(inv_id)
    second = repo.accept_invitation(inv_id)

    assert first["status"] == second["status"] == "accepted"
    assert store.docs["boards"][board_id]["members"] == ["u-1", "u-2"]
    assert repo.list_user_invitations("u-2") == []
    assert repo.warnings[-1]["warning"] == "member_already_present"


def test_invitation_state_machine_is_terminal():
    repo, _store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    declined = repo.create_invitation(board_id, "u-1", "u-2", "b@example.com")
    repo.decline_invitation(declined)
    assert repo.decline_invitation(declined)["status"] == "declined"
    with pytest.raises(ValidationError, match="already declined"):
        repo.accept_invitation(declined)

    accepted = repo.create_invitation(board_id, "u-1", "u-3", "c@example.com")
    repo.accept_invitation(accepted)
    with pytest.raises(ValidationError, match="already accepted"):
        repo.decline_invitation(accepted)


def test_invitation_rules():
    repo, _store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    with pytest.raises(ForbiddenError):
        repo.create_invitation(board_id, "u-2", "u-3", "c@example.com")
    with pytest.raises(ValidationError, match="already a board member"):
        repo.create_invitation(board_id, "u-1", "u-1", "a@example.com")
    repo.create_invitation(board_id, "u-1", "u-2", "b@example.com")
    with pytest.raises(ValidationError, match="already pending"):
        repo.create_invitation(board_id, "u-1", "u-2", "b@example.com")


def test_accept_invitation_for_deleted_board():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    inv_id = repo.create_invitation(board_id, "u-1", "u-2", "b@example.com")
    del store.docs["boards"][board_id]

    with pytest.raises(NotFoundError, match="board not found"):
        repo.accept_invitation(inv_id)


def test_delete_board_removes_invitations_in_every_state():
    repo, store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    other_board = repo.create_board("Other", None, "u-1")
    pending = repo.create_invitation(board_id, "u-1", "u-2", "b@example.com")
    accepted = repo.create_invitation(board_id, "u-1", "u-3", "c@example.com")
    declined = repo.create_invitation(board_id, "u-1", "u-4", "d@example.com")
    kept = repo.create_invitation(other_board, "u-1", "u-2", "b@example.com")
    repo.accept_invitation(accepted)
    repo.decline_invitation(declined)

    report = repo.delete_board(board_id)

    assert report.invitations == 3
    assert pending not in store.docs["invitations"]
    assert list(store.docs["invitations"]) == [kept]


def test_attachment_validation():
    repo, _store = _repo()
    board_id = repo.create_board("B", None, "u-1")
    card_id = repo.create_card(board_id, "C", None, "u-1")
    task_id = repo.create_task(board_id, card_id, "T", None, "u-1")

    with pytest.raises(ValidationError, match="invalid attachment type"):
        repo.create_attachment(task_id, attachment_type="branch", created_by="u-1")
    with pytest.raises(ValidationError, match="sha is required"):
        repo.create_attachment(task_id, attachment_type="commit", created_by="u-1")
    with pytest.raises(ValidationError, match="number is required"):
        repo.create_attachment(task_id, attachment_type="issue", created_by="u-1")
    with pytest.raises(NotFoundError, match="task not found"):
        repo.create_attachment("t-x", attachment_type="issue", number=1, created_by="u-1")

    doc = repo.create_attachment(task_id, attachment_type="issue", number="12", title="Bug", created_by="u-1")
    assert doc["number"] == 12
    assert doc["cardId"] == card_id
    assert doc["boardId"] == board_id
    assert [a["id"] for a in repo.list_task_attachments(task_id)] == [doc["id"]]
    assert repo.delete_attachment(doc["id"]) is True
    assert repo.delete_attachment(doc["id"]) is False


def test_users_are_unique_by_email():
    repo, _store = _repo()
    user = repo.create_user("u-1", " Ada@Example.com ")
    assert user["email"] == "ada@example.com"
    assert user["displayName"] == "ada"
    assert repo.find_user_by_email("ADA@example.com")["id"] == "u-1"
    with pytest.raises(ConflictError, match="email already registered"):
        repo.create_user("u-2", "ada@example.com")
    assert repo.get_or_create_user("u-1", "ada@example.com")["id"] == "u-1"


def test_link_github_stores_token_and_login():
    repo, store = _repo()
    repo.create_user("u-1", "ada@example.com", "Ada")
    repo.link_github("u-1", github_id=42, github_login="ada", access_token="gho_x", photo_url="https://a/p.png")

    doc = store.docs["users"]["u-1"]
    assert doc["githubLogin"] == "ada"
    assert doc["githubAccessToken"] == "gho_x"
    assert doc["photoURL"] == "https://a/p.png"
