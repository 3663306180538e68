import itertools
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from invited.core.invalidation import StatsInvalidationBus
from invited.core.permissions import Actor, build_policy
from invited.core.roles import Role
from invited.core.security import get_current_user
from invited.db import events as events_db
from invited.db import invites as invites_db
from invited.db import polls as polls_db
from invited.db import tasks as tasks_db
from invited.db import users as users_db
from invited.main import app

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def policy():
    return build_policy()

@pytest.fixture
def admin():
    return Actor(id="admin-1", role=Role.ADMIN, name="Ada Admin", email="ada@example.com")

@pytest.fixture
def organizer_b():
    return Actor(id="org-b", role=Role.ORGANIZER, name="Org B", email="orgb@example.com")

@pytest.fixture
def other_organizer():
    return Actor(id="org-c", role=Role.ORGANIZER, name="Org C", email="orgc@example.com")

@pytest.fixture
def guest_a():
    return Actor(id="guest-a", role=Role.GUEST, name="Guest A", email="guesta@example.com")

@pytest.fixture
def other_guest():
    return Actor(id="guest-z", role=Role.GUEST, name="Guest Z", email="guestz@example.com")


class FakeStore:
    """In-memory stand-in for the SQL helpers in invited.db.*"""

    def __init__(self):
        self.users = {}
        self.events = {}
        self.attendees = set()
        self.tasks = {}
        self.polls = {}
        self.options = {}
        self.votes = {}
        self.invitations = {}
        self._ids = itertools.count(1)

    def _id(self, prefix):
        return f"{prefix}-{next(self._ids)}"

    # --- seeding -------------------------------------------------------------
    def add_user(self, actor, password_hash="x", is_active=True):
        self.users[actor.id] = {
            "id": actor.id, "email": actor.email, "name": actor.name,
            "role": actor.role.value, "is_active": is_active,
            "created_at": NOW, "password_hash": password_hash,
        }

    def add_event(self, organizer_id, attendees=(), **fields):
        event_id = fields.pop("id", None) or self._id("event")
        self.events[event_id] = {
            "id": event_id,
            "title": fields.get("title", "Summer party"),
            "description": fields.get("description", "Backyard party"),
            "start_date": fields.get("start_date", NOW + timedelta(days=10)),
            "end_date": fields.get("end_date", NOW + timedelta(days=11)),
            "location": fields.get("location"),
            "is_public": fields.get("is_public", False),
            "max_attendees": fields.get("max_attendees"),
            "status": fields.get("status", "DRAFT"),
            "organizer_id": organizer_id,
            "created_at": NOW, "updated_at": NOW,
        }
        for user_id in attendees:
            self.attendees.add((event_id, user_id))
        return event_id

    def add_task(self, event_id, created_by_id, assignee_id=None, status="TODO", **fields):
        task_id = fields.pop("id", None) or self._id("task")
        self.tasks[task_id] = {
            "id": task_id,
            "title": fields.get("title", "Book venue"),
            "description": fields.get("description"),
            "status": status,
            "priority": fields.get("priority", "MEDIUM"),
            "due_date": fields.get("due_date"),
            "images": [],
            "event_id": event_id,
            "assignee_id": assignee_id,
            "created_by_id": created_by_id,
            "completed_by_id": None, "completed_at": None,
            "completion_note": None, "completion_images": [],
            "created_at": NOW, "updated_at": NOW,
        }
        return task_id

    def add_poll(self, created_by_id, options=("Yes", "No"), event_id=None, **fields):
        poll_id = self._id("poll")
        self.polls[poll_id] = {
            "id": poll_id,
            "title": fields.get("title", "Pizza or tacos?"),
            "description": None,
            "created_by_id": created_by_id,
            "event_id": event_id,
            "allow_multiple": fields.get("allow_multiple", False),
            "end_date": fields.get("end_date"),
            "created_at": NOW, "updated_at": NOW,
        }
        for position, text in enumerate(options):
            option_id = f"{poll_id}-opt-{position}"
            self.options[option_id] = {"id": option_id, "poll_id": poll_id, "text": text, "position": position}
        return poll_id

    # --- users ---------------------------------------------------------------
    def _public_user(self, row):
        return {k: v for k, v in row.items() if k != "password_hash"}

    async def get_user_by_id(self, user_id):
        row = self.users.get(user_id)
        return self._public_user(row) if row else None

    async def get_user_by_email(self, email):
        return next((dict(u) for u in self.users.values() if u["email"].lower() == email.lower()), None)

    async def count_users(self):
        return len(self.users)

    async def create_user(self, email, name, password_hash, role):
        user_id = self._id("user")
        self.users[user_id] = {
            "id": user_id, "email": email.lower(), "name": name, "role": role,
            "is_active": True, "created_at": NOW, "password_hash": password_hash,
        }
        return self._public_user(self.users[user_id])

    async def list_users(self, role=None):
        return [self._public_user(u) for u in self.users.values() if role is None or u["role"] == role]

    async def set_role(self, user_id, role):
        if user_id not in self.users:
            return None
        self.users[user_id]["role"] = role
        return self._public_user(self.users[user_id])

    async def set_active(self, user_id, is_active):
        if user_id not in self.users:
            return 0
        self.users[user_id]["is_active"] = is_active
        return 1

    async def platform_counts(self):
        return {"users": len(self.users), "events": len(self.events), "tasks": len(self.tasks)}

    # --- events --------------------------------------------------------------
    def _event_row(self, event_id):
        e = self.events.get(event_id)
        if e is None:
            return None
        organizer = self.users.get(e["organizer_id"], {})
        return {
            **e,
            "created_by_id": e["organizer_id"],
            "organizer_name": organizer.get("name"),
            "attendee_count": sum(1 for ev, _ in self.attendees if ev == event_id),
        }

    async def get_event(self, event_id):
        return self._event_row(event_id)

    async def is_attendee(self, event_id, user_id):
        return (event_id, user_id) in self.attendees

    async def list_events(self, *, user_id, status=None, search=None, limit=20, offset=0):
        rows = [self._event_row(i) for i in self.events]
        if user_id is not None:
            rows = [
                r for r in rows
                if r["is_public"] or r["organizer_id"] == user_id or (r["id"], user_id) in self.attendees
            ]
        if status:
            rows = [r for r in rows if r["status"] == status]
        return rows[offset:offset + limit], len(rows)

    async def create_event(self, organizer_id, fields):
        return self._event_row(self.add_event(organizer_id, **fields))

    async def update_event(self, event_id, fields):
        self.events[event_id].update(fields)
        return self._event_row(event_id)

    async def delete_event(self, event_id):
        return 1 if self.events.pop(event_id, None) else 0

    async def join_event(self, event_id, user_id):
        if (event_id, user_id) in self.attendees:
            return events_db.ALREADY_ATTENDING
        limit = self.events[event_id]["max_attendees"]
        if limit is not None and sum(1 for ev, _ in self.attendees if ev == event_id) >= limit:
            return events_db.EVENT_FULL
        self.attendees.add((event_id, user_id))
        return events_db.JOINED

    async def remove_attendee(self, event_id, user_id):
        if (event_id, user_id) not in self.attendees:
            return 0
        self.attendees.discard((event_id, user_id))
        return 1

    # --- invitations ---------------------------------------------------------
    def add_invitation(self, event_id, email, invited_by_id, status="PENDING", expires_at=None):
        invite_id = self._id("invite")
        self.invitations[invite_id] = {
            "id": invite_id, "event_id": event_id, "email": email,
            "token": f"token-{invite_id}", "status": status, "invited_by_id": invited_by_id,
            "expires_at": expires_at or datetime.now(tz=timezone.utc) + timedelta(days=7),
            "responded_at": None, "created_at": NOW,
        }
        return invite_id

    def _invite_row(self, invite_id):
        i = self.invitations.get(invite_id)
        if i is None:
            return None
        return {
            **i,
            "event_title": self.events[i["event_id"]]["title"],
            "invited_by_name": self.users.get(i["invited_by_id"], {}).get("name"),
        }

    async def create_invitation(self, event_id, email, invited_by_id, token, expires_at):
        invite_id = self.add_invitation(event_id, email, invited_by_id, expires_at=expires_at)
        self.invitations[invite_id]["token"] = token
        return self._invite_row(invite_id)

    async def get_invitation(self, invite_id):
        return self._invite_row(invite_id)

    async def get_invitation_by_token(self, token):
        return next((self._invite_row(i) for i, v in self.invitations.items() if v["token"] == token), None)

    async def list_invitations(self, event_id):
        return [self._invite_row(i) for i, v in self.invitations.items() if v["event_id"] == event_id]

    async def find_pending(self, event_id, email):
        return next(
            (self._invite_row(i) for i, v in self.invitations.items()
             if v["event_id"] == event_id and v["email"].lower() == email.lower() and v["status"] == "PENDING"),
            None,
        )

    async def set_status(self, invite_id, status):
        invite = self.invitations.get(invite_id)
        if not invite or invite["status"] != "PENDING":
            return 0
        invite.update(status=status.value, responded_at=NOW)
        return 1

    async def accept_invitation(self, invite_id, user_id):
        invite = self.invitations.get(invite_id)
        if not invite or invite["status"] != "PENDING":
            return invites_db.NOT_PENDING
        outcome = await self.join_event(invite["event_id"], user_id)
        if outcome != events_db.EVENT_FULL:
            invite.update(status="ACCEPTED", responded_at=NOW)
        return outcome

    # --- tasks ---------------------------------------------------------------
    def _task_row(self, task_id):
        t = self.tasks.get(task_id)
        if t is None:
            return None
        event = self.events[t["event_id"]]
        name = lambda uid: self.users.get(uid, {}).get("name") if uid else None
        return {
            **t,
            "event_title": event["title"],
            "event_organizer_id": event["organizer_id"],
            "assignee_name": name(t["assignee_id"]),
            "created_by_name": name(t["created_by_id"]),
            "completed_by_name": name(t["completed_by_id"]),
        }

    async def get_task(self, task_id):
        return self._task_row(task_id)

    async def list_tasks(self, *, visible_to=None, status=None, priority=None, event_id=None,
                         assignee_id=None, search=None, limit=20, offset=0):
        rows = [self._task_row(i) for i in self.tasks]
        if visible_to is not None:
            user_id, scope = visible_to
            if scope == "assigned":
                rows = [r for r in rows if r["assignee_id"] == user_id]
            else:
                rows = [
                    r for r in rows
                    if user_id in (r["event_organizer_id"], r["created_by_id"], r["assignee_id"])
                    or (r["event_id"], user_id) in self.attendees
                ]
        for key, value in (("status", status), ("priority", priority),
                           ("event_id", event_id), ("assignee_id", assignee_id)):
            if value:
                rows = [r for r in rows if r[key] == value]
        return rows[offset:offset + limit], len(rows)

    async def create_task(self, created_by_id, fields):
        fields = {k: v for k, v in fields.items() if v is not None}
        task_id = self.add_task(fields.pop("event_id"), created_by_id, fields.pop("assignee_id", None), **fields)
        return self._task_row(task_id)

    async def update_task(self, task_id, fields):
        self.tasks[task_id].update(fields)
        return self._task_row(task_id)

    async def complete_task(self, task_id, completed_by_id, completion_note, completion_images, completed_at):
        self.tasks[task_id].update(
            status="COMPLETED", completed_by_id=completed_by_id, completed_at=completed_at,
            completion_note=completion_note, completion_images=list(completion_images),
        )
        return self._task_row(task_id)

    async def update_completion(self, task_id, fields):
        self.tasks[task_id].update(fields)
        return self._task_row(task_id)

    async def delete_task(self, task_id):
        return 1 if self.tasks.pop(task_id, None) else 0

    async def task_stats(self, event_id):
        rows = [t for t in self.tasks.values() if t["event_id"] == event_id]
        by_status, by_priority = {}, {}
        for t in rows:
            by_status[t["status"]] = by_status.get(t["status"], 0) + 1
            by_priority[t["priority"]] = by_priority.get(t["priority"], 0) + 1
        return {"total": len(rows), "by_status": by_status, "by_priority": by_priority, "overdue": 0}

    async def is_event_member(self, event_id, user_id):
        event = self.events.get(event_id)
        return bool(event) and (event["organizer_id"] == user_id or (event_id, user_id) in self.attendees)

    # --- polls ---------------------------------------------------------------
    def _poll_row(self, poll_id):
        p = self.polls.get(poll_id)
        if p is None:
            return None
        options = [
            {**{k: o[k] for k in ("id", "text", "position")},
             "votes": sum(1 for v in self.votes.values() if v["option_id"] == o["id"])}
            for o in self.options.values() if o["poll_id"] == poll_id
        ]
        event = self.events.get(p["event_id"]) if p["event_id"] else None
        return {
            **p,
            "created_by_name": self.users.get(p["created_by_id"], {}).get("name"),
            "event_organizer_id": event["organizer_id"] if event else None,
            "options": sorted(options, key=lambda o: o["position"]),
        }

    def _poll_visible(self, row, user_id):
        return (
            row["created_by_id"] == user_id
            or row["event_id"] is None
            or row["event_organizer_id"] == user_id
            or (row["event_id"], user_id) in self.attendees
        )

    async def get_poll(self, poll_id, *, visible_to=None):
        row = self._poll_row(poll_id)
        if row is None or (visible_to is not None and not self._poll_visible(row, visible_to)):
            return None
        return row

    async def list_polls(self, *, visible_to, event_id=None, limit=20, offset=0):
        rows = [self._poll_row(i) for i in self.polls]
        if visible_to is not None:
            rows = [r for r in rows if self._poll_visible(r, visible_to)]
        if event_id:
            rows = [r for r in rows if r["event_id"] == event_id]
        return rows[offset:offset + limit], len(rows)

    async def create_poll(self, created_by_id, fields, options):
        fields = dict(fields)
        poll_id = self.add_poll(created_by_id, options=options, event_id=fields.pop("event_id", None), **fields)
        return self._poll_row(poll_id)

    async def update_poll(self, poll_id, fields):
        self.polls[poll_id].update(fields)
        return self._poll_row(poll_id)

    async def delete_poll(self, poll_id):
        return 1 if self.polls.pop(poll_id, None) else 0

    async def user_votes(self, poll_id, user_id):
        return [
            {"id": vid, "option_id": v["option_id"]}
            for vid, v in self.votes.items() if v["poll_id"] == poll_id and v["user_id"] == user_id
        ]

    async def add_vote(self, poll_id, option_id, user_id):
        self.votes[self._id("vote")] = {"poll_id": poll_id, "option_id": option_id, "user_id": user_id}
        return 1

    async def change_vote(self, vote_id, option_id):
        self.votes[vote_id]["option_id"] = option_id
        return 1


_PATCHED = {
    users_db: ("get_user_by_id", "get_user_by_email", "count_users", "create_user",
               "list_users", "set_role", "set_active", "platform_counts"),
    events_db: ("get_event", "is_attendee", "list_events", "create_event", "update_event",
                "delete_event", "join_event", "remove_attendee"),
    tasks_db: ("get_task", "list_tasks", "create_task", "update_task", "complete_task",
               "update_completion", "delete_task", "task_stats", "is_event_member"),
    polls_db: ("get_poll", "list_polls", "create_poll", "update_poll", "delete_poll",
               "user_votes", "add_vote", "change_vote"),
    invites_db: ("create_invitation", "get_invitation", "get_invitation_by_token", "list_invitations",
                 "find_pending", "set_status", "accept_invitation"),
}


@pytest.fixture
def store(monkeypatch, admin, organizer_b, other_organizer, guest_a, other_guest):
    fake = FakeStore()
    for module, names in _PATCHED.items():
        for name in names:
            monkeypatch.setattr(module, name, getattr(fake, name))
    for actor in (admin, organizer_b, other_organizer, guest_a, other_guest):
        fake.add_user(actor)
    return fake


class ActingClient:
    """TestClient whose requests are made as whichever actor was set last."""

    def __init__(self, client):
        self.client = client
        self.actor = None

    def as_(self, actor):
        self.actor = actor
        app.dependency_overrides[get_current_user] = lambda: actor
        return self.client


@pytest.fixture
def api(store):
    app.state.stats_bus = StatsInvalidationBus()
    app.state.policy = build_policy()
    client = ActingClient(TestClient(app))
    yield client
    app.dependency_overrides.clear()

@pytest.fixture
def bus(api):
    return app.state.stats_bus
