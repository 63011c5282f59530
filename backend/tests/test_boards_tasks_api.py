"""
Tests for board and task endpoints, including aggregate upkeep and assignment notifications.
"""

import logging
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
from tests.conftest import auth_headers_for, make_board, make_task
from time_utils import utc_now

logger = logging.getLogger(__name__)


def _project_counters(db: Session, project: models.Project) -> tuple:
    db.refresh(project)
    return project.total_tasks, project.completed_tasks, project.progress, project.status


# ============== Boards ==============


def test_create_board_appends_to_project(
    client: TestClient, project: models.Project, admin_member: models.User, member_user: models.User,
    test_db: Session, dispatcher
):
    headers = auth_headers_for(admin_member)

    first = client.post(f"/api/projects/{project.id}/boards", json={"title": "To Do"}, headers=headers)
    second = client.post(
        f"/api/projects/{project.id}/boards",
        json={"title": "Doing", "status": "In Progress", "assigned_to": [member_user.id, admin_member.id]},
        headers=headers,
    )

    assert first.status_code == 201, first.json()
    assert second.status_code == 201, second.json()
    assert first.json()["position"] == 0
    assert second.json()["position"] == 1
    assert second.json()["status"] == "In Progress"
    test_db.refresh(project)
    assert project.board_ids == [first.json()["id"], second.json()["id"]]
    # The acting user is not notified about their own assignment
    assert [uid for uid, _, _ in dispatcher.sent] == [member_user.id]


def test_member_cannot_create_board(client: TestClient, project: models.Project, member_user: models.User):
    response = client.post(
        f"/api/projects/{project.id}/boards", json={"title": "Mine"}, headers=auth_headers_for(member_user)
    )

    assert response.status_code == 403


def test_create_board_with_unknown_member(client: TestClient, project: models.Project, owner: models.User):
    response = client.post(
        f"/api/projects/{project.id}/boards",
        json={"title": "Ghosts", "assigned_to": [999]},
        headers=auth_headers_for(owner),
    )

    assert response.status_code == 404


def test_list_boards_ordered_by_position(
    client: TestClient, project: models.Project, viewer_user: models.User, test_db: Session
):
    late = make_board(test_db, project, "Late", position=5)
    early = make_board(test_db, project, "Early", position=1)

    response = client.get(f"/api/projects/{project.id}/boards", headers=auth_headers_for(viewer_user))

    assert response.status_code == 200
    assert [b["id"] for b in response.json()] == [early.id, late.id]


def test_update_board_notifies_new_members_only(
    client: TestClient, board: models.Board, owner: models.User, member_user: models.User,
    viewer_user: models.User, test_db: Session, dispatcher
):
    board.member_ids = [member_user.id]
    test_db.commit()

    response = client.put(
        f"/api/boards/{board.id}",
        json={"title": "Renamed", "assigned_to": [member_user.id, viewer_user.id]},
        headers=auth_headers_for(owner),
    )

    assert response.status_code == 200, response.json()
    assert response.json()["title"] == "Renamed"
    assert response.json()["member_ids"] == [member_user.id, viewer_user.id]
    assert [uid for uid, _, _ in dispatcher.sent] == [viewer_user.id]


def test_update_board_status(client: TestClient, board: models.Board, admin_member: models.User):
    response = client.patch(
        f"/api/boards/{board.id}/status", json={"status": "Done"}, headers=auth_headers_for(admin_member)
    )

    assert response.status_code == 200
    assert response.json()["status"] == "Done"


def test_reorder_boards(client: TestClient, project: models.Project, owner: models.User, test_db: Session):
    a = make_board(test_db, project, "A", position=0)
    b = make_board(test_db, project, "B", position=1)
    c = make_board(test_db, project, "C", position=2)

    response = client.put(
        f"/api/projects/{project.id}/boards/reorder",
        json={"board_ids": [c.id, a.id, b.id]},
        headers=auth_headers_for(owner),
    )

    assert response.status_code == 200, response.json()
    assert [(board["id"], board["position"]) for board in response.json()] == [(c.id, 0), (a.id, 1), (b.id, 2)]


def test_reorder_boards_rejects_bad_input(
    client: TestClient, project: models.Project, owner: models.User, test_db: Session
):
    mine = make_board(test_db, project, "Mine")
    other = models.Project(title="Other", created_by=owner.id, members=[], board_ids=[])
    test_db.add(other)
    test_db.commit()
    foreign = make_board(test_db, other, "Foreign")
    headers = auth_headers_for(owner)
    url = f"/api/projects/{project.id}/boards/reorder"

    assert client.put(url, json={"board_ids": "not-a-list"}, headers=headers).status_code == 400
    assert client.put(url, json={}, headers=headers).status_code == 400
    assert client.put(url, json={"board_ids": [mine.id, foreign.id]}, headers=headers).status_code == 400
    assert client.put(url, json={"board_ids": [mine.id, 999]}, headers=headers).status_code == 400
    assert client.put(url, json={"board_ids": [{"id": mine.id}]}, headers=headers).status_code == 400
    assert client.put(url, json={"board_ids": [True]}, headers=headers).status_code == 400


def test_delete_board_updates_counters(
    client: TestClient, project: models.Project, board: models.Board, owner: models.User, test_db: Session
):
    for index in range(4):
        make_task(test_db, board, status="Done" if index < 2 else "To Do")
    client.get(f"/api/projects/{project.id}/stats", headers=auth_headers_for(owner))
    assert _project_counters(test_db, project) == (4, 2, 50, "In Progress")

    response = client.delete(f"/api/boards/{board.id}", headers=auth_headers_for(owner))

    assert response.status_code == 200, response.json()
    assert response.json()["deleted_tasks"] == 4
    assert _project_counters(test_db, project) == (0, 0, 0, "To Do")
    assert project.board_ids == []


def test_viewer_cannot_delete_board(client: TestClient, board: models.Board, viewer_user: models.User):
    response = client.delete(f"/api/boards/{board.id}", headers=auth_headers_for(viewer_user))

    assert response.status_code == 403


# ============== Tasks ==============


def test_create_task_updates_board_and_counters(
    client: TestClient, project: models.Project, board: models.Board, member_user: models.User,
    viewer_user: models.User, test_db: Session, dispatcher
):
    response = client.post(
        f"/api/boards/{board.id}/tasks",
        json={"title": "Write copy", "status": "Done", "assigned_to": [viewer_user.id, viewer_user.id]},
        headers=auth_headers_for(member_user),
    )

    assert response.status_code == 201, response.json()
    task = response.json()
    assert task["created_by"] == member_user.id
    assert task["assigned_to"] == [viewer_user.id]
    test_db.refresh(board)
    assert board.task_ids == [task["id"]]
    assert _project_counters(test_db, project) == (1, 1, 100, "Completed")
    assert dispatcher.sent == [(viewer_user.id, "task", "You have been assigned a new task: Write copy")]


def test_viewer_cannot_create_task(client: TestClient, board: models.Board, viewer_user: models.User):
    response = client.post(f"/api/boards/{board.id}/tasks", json={"title": "x"}, headers=auth_headers_for(viewer_user))

    assert response.status_code == 403


def test_create_task_on_missing_board(client: TestClient, owner: models.User):
    response = client.post("/api/boards/999/tasks", json={"title": "x"}, headers=auth_headers_for(owner))

    assert response.status_code == 404


def test_update_task_status_recalculates(
    client: TestClient, project: models.Project, board: models.Board, admin_member: models.User, test_db: Session
):
    task = make_task(test_db, board)
    make_task(test_db, board)

    response = client.put(f"/api/tasks/{task.id}", json={"status": "Done"}, headers=auth_headers_for(admin_member))

    assert response.status_code == 200, response.json()
    assert response.json()["last_modified_by"] == admin_member.id
    assert _project_counters(test_db, project) == (2, 1, 50, "In Progress")


def test_member_edits_only_own_tasks(
    client: TestClient, board: models.Board, member_user: models.User, owner: models.User, test_db: Session
):
    own = make_task(test_db, board, created_by=member_user.id)
    foreign = make_task(test_db, board, created_by=owner.id)
    headers = auth_headers_for(member_user)

    assert client.put(f"/api/tasks/{own.id}", json={"title": "Mine"}, headers=headers).status_code == 200
    assert client.put(f"/api/tasks/{foreign.id}", json={"title": "Theirs"}, headers=headers).status_code == 403


def test_update_task_notifies_new_assignees_only(
    client: TestClient, board: models.Board, owner: models.User, member_user: models.User,
    viewer_user: models.User, test_db: Session, dispatcher
):
    task = make_task(test_db, board, "Ship it", assigned_to=[member_user.id])

    response = client.put(
        f"/api/tasks/{task.id}",
        json={"assigned_to": [member_user.id, viewer_user.id]},
        headers=auth_headers_for(owner),
    )

    assert response.status_code == 200
    assert dispatcher.sent == [(viewer_user.id, "task", "You have been assigned a new task: Ship it")]


def test_move_task_between_projects(
    client: TestClient, project: models.Project, board: models.Board, owner: models.User, test_db: Session
):
    other = models.Project(title="Other", created_by=owner.id, members=[], board_ids=[])
    test_db.add(other)
    test_db.commit()
    target = make_board(test_db, other, "Target")
    task = make_task(test_db, board, status="Done")
    client.get(f"/api/projects/{project.id}/stats", headers=auth_headers_for(owner))

    response = client.put(f"/api/tasks/{task.id}", json={"board_id": target.id}, headers=auth_headers_for(owner))

    assert response.status_code == 200, response.json()
    assert response.json()["board_id"] == target.id
    test_db.refresh(board)
    test_db.refresh(target)
    assert board.task_ids == []
    assert target.task_ids == [task.id]
    assert _project_counters(test_db, project) == (0, 0, 0, "To Do")
    assert _project_counters(test_db, other) == (1, 1, 100, "Completed")


def test_move_task_requires_access_to_destination(
    client: TestClient, board: models.Board, member_user: models.User, outsider: models.User, test_db: Session
):
    foreign_project = models.Project(title="Private", created_by=outsider.id, members=[], board_ids=[])
    test_db.add(foreign_project)
    test_db.commit()
    foreign_board = make_board(test_db, foreign_project)
    task = make_task(test_db, board, created_by=member_user.id)

    response = client.put(
        f"/api/tasks/{task.id}", json={"board_id": foreign_board.id}, headers=auth_headers_for(member_user)
    )

    assert response.status_code == 403
    test_db.refresh(task)
    assert task.board_id == board.id


def test_delete_task(
    client: TestClient, project: models.Project, board: models.Board, owner: models.User, test_db: Session
):
    done = make_task(test_db, board, status="Done")
    make_task(test_db, board)

    response = client.delete(f"/api/tasks/{done.id}", headers=auth_headers_for(owner))

    assert response.status_code == 200
    test_db.refresh(board)
    assert done.id not in board.task_ids
    assert _project_counters(test_db, project) == (1, 0, 0, "To Do")


def test_comments_and_attachments(
    client: TestClient, board: models.Board, viewer_user: models.User, member_user: models.User, test_db: Session
):
    task = make_task(test_db, board)

    comment = client.post(
        f"/api/tasks/{task.id}/comments", json={"text": "Looks good"}, headers=auth_headers_for(viewer_user)
    )
    viewer_attachment = client.post(
        f"/api/tasks/{task.id}/attachments",
        json={"filename": "brief.pdf", "path": "/files/brief.pdf"},
        headers=auth_headers_for(viewer_user),
    )
    attachment = client.post(
        f"/api/tasks/{task.id}/attachments",
        json={"filename": "brief.pdf", "path": "/files/brief.pdf"},
        headers=auth_headers_for(member_user),
    )

    assert comment.status_code == 201
    assert comment.json()["comments"][0]["text"] == "Looks good"
    assert comment.json()["comments"][0]["user_id"] == viewer_user.id
    assert viewer_attachment.status_code == 403
    assert attachment.status_code == 201
    assert attachment.json()["attachments"][0]["filename"] == "brief.pdf"
    assert len(attachment.json()["comments"]) == 1


def test_upcoming_tasks(
    client: TestClient, board: models.Board, member_user: models.User, test_db: Session
):
    now = utc_now()
    soon = make_task(test_db, board, "Soon", deadline=now + timedelta(days=2), assigned_to=[member_user.id])
    make_task(test_db, board, "Later", deadline=now + timedelta(days=30), assigned_to=[member_user.id])
    make_task(test_db, board, "Finished", status="Done", deadline=now + timedelta(days=1), assigned_to=[member_user.id])
    make_task(test_db, board, "Someone else", deadline=now + timedelta(days=1), assigned_to=[])

    response = client.get("/api/tasks/upcoming?days=7", headers=auth_headers_for(member_user))

    assert response.status_code == 200
    assert [t["id"] for t in response.json()] == [soon.id]


def test_overdue_flag(client: TestClient, board: models.Board, viewer_user: models.User, test_db: Session):
    past = utc_now() - timedelta(days=1)
    late = make_task(test_db, board, "Late", deadline=past)
    finished = make_task(test_db, board, "Finished", status="Done", deadline=past)
    headers = auth_headers_for(viewer_user)

    assert client.get(f"/api/tasks/{late.id}", headers=headers).json()["overdue"] is True
    assert client.get(f"/api/tasks/{finished.id}", headers=headers).json()["overdue"] is False


def test_calendar_events_in_range(
    client: TestClient, project: models.Project, board: models.Board, team: models.Team, owner: models.User,
    member_user: models.User, viewer_user: models.User, test_db: Session
):
    now = utc_now()
    project.deadline = now + timedelta(days=5)
    test_db.commit()
    mine = make_task(test_db, board, "Mine", deadline=now + timedelta(days=2), assigned_to=[member_user.id])
    via_team = make_task(test_db, board, "Team work", deadline=now + timedelta(days=3), assigned_team_id=team.id)
    make_task(test_db, board, "Theirs", deadline=now + timedelta(days=1), assigned_to=[viewer_user.id])
    make_task(test_db, board, "Far off", deadline=now + timedelta(days=40), assigned_to=[member_user.id])
    private = models.Project(title="Private", created_by=owner.id, members=[], board_ids=[])
    test_db.add(private)
    test_db.commit()
    make_task(test_db, make_board(test_db, private), "Hidden", deadline=now + timedelta(days=2),
              assigned_to=[member_user.id])

    response = client.get(
        "/api/calendar/events",
        params={"start": now.isoformat(), "end": (now + timedelta(days=7)).isoformat()},
        headers=auth_headers_for(member_user),
    )

    assert response.status_code == 200, response.json()
    events = response.json()
    assert [e["id"] for e in events] == [f"task_{mine.id}", f"task_{via_team.id}", f"project_{project.id}"]
    assert events[2]["title"] == "Launch (Project)"
    assert events[0]["project_title"] == "Launch"


def test_calendar_events_rejects_inverted_range(client: TestClient, member_user: models.User):
    now = utc_now()

    response = client.get(
        "/api/calendar/events",
        params={"start": now.isoformat(), "end": (now - timedelta(days=1)).isoformat()},
        headers=auth_headers_for(member_user),
    )

    assert response.status_code == 400
