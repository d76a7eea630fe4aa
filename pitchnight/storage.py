import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

from . import config
from .errors import AuthorizationError, NotFoundError, UnauthenticatedError, ValidationError
from .utils import JOIN_CODE_ALPHABET, SESSION_CODE_ALPHABET, generate_code

DB_PATH = Path(config.DB_PATH)


def get_conn() -> sqlite3.Connection:
    conn = sqlite3.connect(str(DB_PATH))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def init_db() -> None:
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    with get_conn() as conn:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              name TEXT NOT NULL,
              join_code TEXT NOT NULL UNIQUE,
              host_id TEXT NOT NULL,
              status TEXT NOT NULL DEFAULT 'setup',
              submission_deadline TEXT,
              current_presentation_id INTEGER REFERENCES groups(id) ON DELETE SET NULL,
              timer_started_at TEXT,
              timer_duration INTEGER,
              timer_paused_at TEXT,
              timer_paused_remaining INTEGER,
              winners_reveal_step INTEGER NOT NULL DEFAULT 0,
              confetti_count INTEGER NOT NULL DEFAULT 0,
              confetti_triggered_at TEXT,
              created_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS categories (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
              name TEXT NOT NULL,
              description TEXT,
              position INTEGER NOT NULL,
              UNIQUE (event_id, position)
            );
            CREATE TABLE IF NOT EXISTS groups (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
              name TEXT NOT NULL,
              status TEXT NOT NULL DEFAULT 'not_submitted',
              presentation_order INTEGER,
              submitted_at TEXT,
              UNIQUE (event_id, presentation_order)
            );
            CREATE TABLE IF NOT EXISTS group_members (
              group_id INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
              user_id TEXT NOT NULL,
              is_leader INTEGER NOT NULL DEFAULT 0,
              PRIMARY KEY (group_id, user_id)
            );
            CREATE TABLE IF NOT EXISTS voting_sessions (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
              display_name TEXT NOT NULL,
              session_code TEXT NOT NULL UNIQUE,
              created_at TEXT NOT NULL,
              last_active TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS votes (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
              group_id INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
              user_id TEXT,
              voting_session_id INTEGER REFERENCES voting_sessions(id) ON DELETE CASCADE,
              created_at TEXT NOT NULL,
              CHECK ((user_id IS NULL) != (voting_session_id IS NULL))
            );
            CREATE UNIQUE INDEX IF NOT EXISTS uq_vote_user
              ON votes(event_id, group_id, user_id) WHERE user_id IS NOT NULL;
            CREATE UNIQUE INDEX IF NOT EXISTS uq_vote_session
              ON votes(event_id, group_id, voting_session_id) WHERE voting_session_id IS NOT NULL;
            CREATE TABLE IF NOT EXISTS ratings (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              vote_id INTEGER NOT NULL REFERENCES votes(id) ON DELETE CASCADE,
              category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
              stars INTEGER NOT NULL CHECK (stars BETWEEN 1 AND 5),
              UNIQUE (vote_id, category_id)
            );
            """
        )


def _now() -> datetime:
    """当前 UTC 时间（不带时区，与库中的 ISO 字符串一致）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Event:
    id: int
    name: str
    join_code: str
    host_id: str
    status: str
    submission_deadline: Optional[datetime]
    current_presentation_id: Optional[int]
    timer_started_at: Optional[datetime]
    timer_duration: Optional[int]
    timer_paused_at: Optional[datetime]
    timer_paused_remaining: Optional[int]
    winners_reveal_step: int
    confetti_count: int
    confetti_triggered_at: Optional[datetime]
    created_at: datetime

    @classmethod
    def from_row(cls, r: sqlite3.Row) -> "Event":
        return cls(
            id=int(r["id"]),
            name=r["name"],
            join_code=r["join_code"],
            host_id=r["host_id"],
            status=r["status"],
            submission_deadline=_parse(r["submission_deadline"]),
            current_presentation_id=r["current_presentation_id"],
            timer_started_at=_parse(r["timer_started_at"]),
            timer_duration=r["timer_duration"],
            timer_paused_at=_parse(r["timer_paused_at"]),
            timer_paused_remaining=r["timer_paused_remaining"],
            winners_reveal_step=int(r["winners_reveal_step"]),
            confetti_count=int(r["confetti_count"]),
            confetti_triggered_at=_parse(r["confetti_triggered_at"]),
            created_at=_parse(r["created_at"]),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "join_code": self.join_code,
            "host_id": self.host_id,
            "status": self.status,
            "current_presentation_id": self.current_presentation_id,
            "winners_reveal_step": self.winners_reveal_step,
            "confetti_count": self.confetti_count,
            "confetti_triggered_at": _iso(self.confetti_triggered_at),
        }


@dataclass
class Category:
    id: int
    event_id: int
    name: str
    description: Optional[str]
    order: int

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description, "order": self.order}


@dataclass
class Group:
    id: int
    event_id: int
    name: str
    status: str
    presentation_order: Optional[int]
    submitted_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "presentation_order": self.presentation_order,
        }


@dataclass
class VotingSession:
    id: int
    event_id: int
    display_name: str
    session_code: str
    created_at: datetime
    last_active: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "session_code": self.session_code,
            "last_active": _iso(self.last_active),
        }


@dataclass
class Vote:
    id: int
    event_id: int
    group_id: int
    user_id: Optional[str]
    voting_session_id: Optional[int]
    ratings: Dict[int, int] = field(default_factory=dict)  # category_id -> stars


def _category(r: sqlite3.Row) -> Category:
    return Category(
        id=int(r["id"]),
        event_id=int(r["event_id"]),
        name=r["name"],
        description=r["description"],
        order=int(r["position"]),
    )


def _group(r: sqlite3.Row) -> Group:
    return Group(
        id=int(r["id"]),
        event_id=int(r["event_id"]),
        name=r["name"],
        status=r["status"],
        presentation_order=r["presentation_order"],
        submitted_at=_parse(r["submitted_at"]),
    )


def _session(r: sqlite3.Row) -> VotingSession:
    return VotingSession(
        id=int(r["id"]),
        event_id=int(r["event_id"]),
        display_name=r["display_name"],
        session_code=r["session_code"],
        created_at=_parse(r["created_at"]),
        last_active=_parse(r["last_active"]),
    )


# ============= 活动 =============

def create_event(
    name: str,
    host_id: str,
    categories: List[dict],
    submission_deadline: Optional[datetime] = None,
) -> Event:
    """创建活动及其评分类别（至少一个类别）"""
    if not name or not name.strip():
        raise ValidationError("Event name is required")
    if not categories:
        raise ValidationError("At least one rating category is required")
    with get_conn() as conn:
        while True:
            join_code = generate_code(8, JOIN_CODE_ALPHABET)
            taken = conn.execute("SELECT 1 FROM events WHERE join_code=?", (join_code,)).fetchone()
            if taken is None:
                break
        cur = conn.execute(
            "INSERT INTO events(name, join_code, host_id, status, submission_deadline, created_at) "
            "VALUES(?, ?, ?, 'setup', ?, ?)",
            (name.strip(), join_code, host_id, _iso(submission_deadline), _now().isoformat()),
        )
        event_id = int(cur.lastrowid)
        insert_categories(conn, event_id, categories)
        return fetch_event(conn, event_id)


def fetch_event(conn: sqlite3.Connection, event_id: int) -> Event:
    row = conn.execute("SELECT * FROM events WHERE id=?", (event_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"Event {event_id} not found")
    return Event.from_row(row)


def fetch_hosted_event(conn: sqlite3.Connection, event_id: int, actor_id: Optional[str]) -> Event:
    """读取活动并确认操作者是主持人"""
    if not actor_id:
        raise UnauthenticatedError("Not authenticated")
    event = fetch_event(conn, event_id)
    if event.host_id != str(actor_id):
        raise AuthorizationError("Only the event host can do this")
    return event


def get_event(event_id: int) -> Event:
    with get_conn() as conn:
        return fetch_event(conn, event_id)


def get_event_by_code(join_code: str) -> Event:
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM events WHERE join_code=?", (join_code.upper(),)).fetchone()
        if row is None:
            raise NotFoundError(f"Event with code {join_code} not found")
        return Event.from_row(row)


def update_event(conn: sqlite3.Connection, event_id: int, **fields) -> None:
    """更新活动字段；datetime 值以 ISO 字符串保存"""
    if not fields:
        return
    values = [_iso(v) if isinstance(v, datetime) else v for v in fields.values()]
    assignments = ", ".join(f"{name}=?" for name in fields)
    conn.execute(f"UPDATE events SET {assignments} WHERE id=?", (*values, event_id))


# ============= 评分类别 =============

def insert_categories(conn: sqlite3.Connection, event_id: int, categories: List[dict]) -> None:
    for position, cat in enumerate(categories):
        conn.execute(
            "INSERT INTO categories(event_id, name, description, position) VALUES(?, ?, ?, ?)",
            (event_id, cat["name"], cat.get("description"), position),
        )


def fetch_categories(conn: sqlite3.Connection, event_id: int) -> List[Category]:
    rows = conn.execute(
        "SELECT * FROM categories WHERE event_id=? ORDER BY position ASC",
        (event_id,),
    ).fetchall()
    return [_category(r) for r in rows]


def list_categories(event_id: int) -> List[Category]:
    with get_conn() as conn:
        return fetch_categories(conn, event_id)


# ============= 组别 =============

def add_group(event_id: int, name: str, leader_id: Optional[str] = None) -> Group:
    """新建组别，创建者自动成为组长"""
    with get_conn() as conn:
        fetch_event(conn, event_id)
        cur = conn.execute(
            "INSERT INTO groups(event_id, name) VALUES(?, ?)",
            (event_id, name),
        )
        group_id = int(cur.lastrowid)
        if leader_id is not None:
            conn.execute(
                "INSERT INTO group_members(group_id, user_id, is_leader) VALUES(?, ?, 1)",
                (group_id, leader_id),
            )
        return fetch_group(conn, event_id, group_id)


def fetch_group(conn: sqlite3.Connection, event_id: int, group_id: int) -> Group:
    row = conn.execute(
        "SELECT * FROM groups WHERE id=? AND event_id=?",
        (group_id, event_id),
    ).fetchone()
    if row is None:
        raise NotFoundError(f"Group {group_id} not found in event {event_id}")
    return _group(row)


def fetch_groups(conn: sqlite3.Connection, event_id: int) -> List[Group]:
    rows = conn.execute("SELECT * FROM groups WHERE event_id=? ORDER BY id", (event_id,)).fetchall()
    return [_group(r) for r in rows]


def list_groups(event_id: int) -> List[Group]:
    with get_conn() as conn:
        return fetch_groups(conn, event_id)


def fetch_lineup(conn: sqlite3.Connection, event_id: int) -> List[Group]:
    """
    获取发表阵容：优先按发表顺序；未设置顺序时取已提交（含迟交）的组
    """
    rows = conn.execute(
        "SELECT * FROM groups WHERE event_id=? AND presentation_order IS NOT NULL "
        "ORDER BY presentation_order ASC",
        (event_id,),
    ).fetchall()
    if rows:
        return [_group(r) for r in rows]
    rows = conn.execute(
        "SELECT * FROM groups WHERE event_id=? AND status IN ('submitted', 'late') ORDER BY id",
        (event_id,),
    ).fetchall()
    return [_group(r) for r in rows]


def join_group(event_id: int, group_id: int, user_id: str) -> None:
    """加入组别（一个用户在同一活动中只属于一个组）"""
    with get_conn() as conn:
        fetch_group(conn, event_id, group_id)
        existing = conn.execute(
            "SELECT 1 FROM group_members m JOIN groups g ON m.group_id = g.id "
            "WHERE g.event_id=? AND m.user_id=?",
            (event_id, user_id),
        ).fetchone()
        if existing is not None:
            raise ValidationError("You are already in a group for this event")
        conn.execute(
            "INSERT INTO group_members(group_id, user_id, is_leader) VALUES(?, ?, 0)",
            (group_id, user_id),
        )


def submit_presentation(event_id: int, group_id: int, user_id: str, now: Optional[datetime] = None) -> Group:
    """组员提交作品；超过截止时间则标记为迟交"""
    now = now or _now()
    with get_conn() as conn:
        event = fetch_event(conn, event_id)
        fetch_group(conn, event_id, group_id)
        member = conn.execute(
            "SELECT 1 FROM group_members WHERE group_id=? AND user_id=?",
            (group_id, user_id),
        ).fetchone()
        if member is None:
            raise ValidationError("Only group members can submit a presentation")
        late = event.submission_deadline is not None and now > event.submission_deadline
        conn.execute(
            "UPDATE groups SET status=?, submitted_at=? WHERE id=?",
            ("late" if late else "submitted", now.isoformat(), group_id),
        )
        return fetch_group(conn, event_id, group_id)


def list_member_ids(conn: sqlite3.Connection, event_id: int) -> List[str]:
    rows = conn.execute(
        "SELECT DISTINCT m.user_id FROM group_members m JOIN groups g ON m.group_id = g.id "
        "WHERE g.event_id=? ORDER BY m.user_id",
        (event_id,),
    ).fetchall()
    return [r["user_id"] for r in rows]


# ============= 匿名投票会话 =============

def insert_voting_session(conn: sqlite3.Connection, event_id: int, display_name: str, code_length: int) -> VotingSession:
    now = _now().isoformat()
    while True:
        code = generate_code(code_length, SESSION_CODE_ALPHABET)
        taken = conn.execute("SELECT 1 FROM voting_sessions WHERE session_code=?", (code,)).fetchone()
        if taken is None:
            break
    cur = conn.execute(
        "INSERT INTO voting_sessions(event_id, display_name, session_code, created_at, last_active) "
        "VALUES(?, ?, ?, ?, ?)",
        (event_id, display_name, code, now, now),
    )
    row = conn.execute("SELECT * FROM voting_sessions WHERE id=?", (cur.lastrowid,)).fetchone()
    return _session(row)


def fetch_session_by_code(conn: sqlite3.Connection, session_code: str) -> Optional[VotingSession]:
    row = conn.execute("SELECT * FROM voting_sessions WHERE session_code=?", (session_code,)).fetchone()
    return _session(row) if row else None


def fetch_active_sessions(conn: sqlite3.Connection, event_id: int, since: datetime) -> List[VotingSession]:
    rows = conn.execute(
        "SELECT * FROM voting_sessions WHERE event_id=? AND last_active >= ? ORDER BY created_at ASC",
        (event_id, since.isoformat()),
    ).fetchall()
    return [_session(r) for r in rows]


# ============= 投票与评分 =============

def find_vote_id(
    conn: sqlite3.Connection,
    event_id: int,
    group_id: int,
    user_id: Optional[str],
    voting_session_id: Optional[int],
) -> Optional[int]:
    if voting_session_id is not None:
        row = conn.execute(
            "SELECT id FROM votes WHERE event_id=? AND group_id=? AND voting_session_id=?",
            (event_id, group_id, voting_session_id),
        ).fetchone()
    else:
        row = conn.execute(
            "SELECT id FROM votes WHERE event_id=? AND group_id=? AND user_id=?",
            (event_id, group_id, user_id),
        ).fetchone()
    return int(row["id"]) if row else None


def insert_vote(
    conn: sqlite3.Connection,
    event_id: int,
    group_id: int,
    user_id: Optional[str],
    voting_session_id: Optional[int],
) -> int:
    cur = conn.execute(
        "INSERT INTO votes(event_id, group_id, user_id, voting_session_id, created_at) VALUES(?, ?, ?, ?, ?)",
        (event_id, group_id, user_id, voting_session_id, _now().isoformat()),
    )
    return int(cur.lastrowid)


def fetch_votes(conn: sqlite3.Connection, event_id: int, group_id: Optional[int] = None) -> List[Vote]:
    """读取活动（或某组）的全部投票及其评分"""
    sql = "SELECT * FROM votes WHERE event_id=?"
    params: tuple = (event_id,)
    if group_id is not None:
        sql += " AND group_id=?"
        params = (event_id, group_id)
    votes: Dict[int, Vote] = {}
    for r in conn.execute(sql + " ORDER BY id", params).fetchall():
        votes[int(r["id"])] = Vote(
            id=int(r["id"]),
            event_id=int(r["event_id"]),
            group_id=int(r["group_id"]),
            user_id=r["user_id"],
            voting_session_id=r["voting_session_id"],
        )
    if not votes:
        return []
    rating_rows = conn.execute(
        "SELECT r.vote_id, r.category_id, r.stars FROM ratings r JOIN votes v ON r.vote_id = v.id "
        "WHERE v.event_id=?",
        (event_id,),
    ).fetchall()
    for r in rating_rows:
        vote = votes.get(int(r["vote_id"]))
        if vote is not None:
            vote.ratings[int(r["category_id"])] = int(r["stars"])
    return list(votes.values())


def session_cutoff(now: datetime, minutes: int) -> datetime:
    return now - timedelta(minutes=minutes)
