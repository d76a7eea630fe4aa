"""
投票者身份解析

每一位投票者要么是已登录用户（user_id），要么是匿名投票会话（voting_session_id），
二者互斥。匿名会话在需要时按显示名创建。
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from . import config
from .errors import InvalidSessionError, NotFoundError, UnauthenticatedError, ValidationError
from .storage import (
    VotingSession,
    _now,
    fetch_active_sessions,
    fetch_event,
    fetch_hosted_event,
    fetch_session_by_code,
    get_conn,
    insert_voting_session,
    list_member_ids,
    session_cutoff,
)
from .utils import AuditLogger, clean_name, logger


@dataclass(frozen=True)
class VoterIdentity:
    user_id: Optional[str] = None
    voting_session_id: Optional[int] = None
    session_code: Optional[str] = None

    def __post_init__(self):
        if (self.user_id is None) == (self.voting_session_id is None):
            raise ValueError("exactly one of user_id and voting_session_id must be set")

    @property
    def is_anonymous(self) -> bool:
        return self.voting_session_id is not None

    def __str__(self) -> str:
        if self.is_anonymous:
            return f"session:{self.voting_session_id}"
        return f"user:{self.user_id}"


def create_voting_session(event_id: int, display_name: str) -> VotingSession:
    """为匿名投票者创建会话（显示名不能为空）"""
    name = clean_name(display_name or "")
    if not name:
        raise ValidationError("Display name is required")
    with get_conn() as conn:
        fetch_event(conn, event_id)
        session = insert_voting_session(conn, event_id, name, config.SESSION_CODE_LENGTH)
    AuditLogger.log_session_created(event_id, session.session_code)
    return session


def resolve_voter_identity(
    event_id: int,
    user_id: Optional[str] = None,
    session_code: Optional[str] = None,
    display_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> VoterIdentity:
    """
    将请求映射为稳定的投票者身份

    顺序：已登录用户 > 会话码 > 按显示名新建会话；都不满足则未认证。
    """
    if user_id:
        return VoterIdentity(user_id=str(user_id))

    if session_code:
        with get_conn() as conn:
            session = fetch_session_by_code(conn, session_code)
            if session is None or session.event_id != event_id:
                logger.warning(f"无效会话码: {session_code} (活动 {event_id})")
                raise InvalidSessionError("Invalid session")
            conn.execute(
                "UPDATE voting_sessions SET last_active=? WHERE id=?",
                ((now or _now()).isoformat(), session.id),
            )
        return VoterIdentity(voting_session_id=session.id, session_code=session.session_code)

    if display_name and display_name.strip():
        session = create_voting_session(event_id, display_name)
        return VoterIdentity(voting_session_id=session.id, session_code=session.session_code)

    raise UnauthenticatedError("Not authenticated")


def remove_voting_session(event_id: int, actor_id: Optional[str], session_id: int) -> None:
    """主持人移除匿名投票者：先删其投票，再删会话"""
    with get_conn() as conn:
        fetch_hosted_event(conn, event_id, actor_id)
        row = conn.execute(
            "SELECT id FROM voting_sessions WHERE id=? AND event_id=?",
            (session_id, event_id),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Voting session {session_id} not found")
        conn.execute("DELETE FROM votes WHERE voting_session_id=?", (session_id,))
        conn.execute("DELETE FROM voting_sessions WHERE id=?", (session_id,))
    AuditLogger.log_host_action("remove_voting_session", event_id, actor_id, f"session={session_id}")


def remove_participant(event_id: int, actor_id: Optional[str], user_id: str) -> List[int]:
    """
    主持人移除登录参与者

    将其移出本活动的所有组别；因此变空的组别一并删除（连同其投票）。
    返回被删除的组 id。
    """
    with get_conn() as conn:
        fetch_hosted_event(conn, event_id, actor_id)
        rows = conn.execute(
            "SELECT m.group_id FROM group_members m JOIN groups g ON m.group_id = g.id "
            "WHERE g.event_id=? AND m.user_id=?",
            (event_id, user_id),
        ).fetchall()
        if not rows:
            raise NotFoundError(f"User {user_id} is not a participant of event {event_id}")
        group_ids = [int(r["group_id"]) for r in rows]
        conn.executemany(
            "DELETE FROM group_members WHERE group_id=? AND user_id=?",
            [(gid, user_id) for gid in group_ids],
        )
        emptied = [
            gid for gid in group_ids
            if conn.execute("SELECT 1 FROM group_members WHERE group_id=?", (gid,)).fetchone() is None
        ]
        conn.executemany("DELETE FROM groups WHERE id=?", [(gid,) for gid in emptied])
    AuditLogger.log_host_action("remove_participant", event_id, actor_id, f"user={user_id} groups_deleted={emptied}")
    return emptied


@dataclass
class Participants:
    members: List[str]
    sessions: List[VotingSession]

    @property
    def count(self) -> int:
        return len(self.members) + len(self.sessions)

    def to_dict(self) -> dict:
        return {
            "members": self.members,
            "sessions": [s.to_dict() for s in self.sessions],
            "count": self.count,
        }


def active_participants(event_id: int, now: Optional[datetime] = None) -> Participants:
    """在线参与者 = 活动中有组别的登录用户 ∪ 最近活跃的匿名会话"""
    since = session_cutoff(now or _now(), config.ACTIVE_WINDOW_MINUTES)
    with get_conn() as conn:
        fetch_event(conn, event_id)
        return Participants(
            members=list_member_ids(conn, event_id),
            sessions=fetch_active_sessions(conn, event_id, since),
        )
