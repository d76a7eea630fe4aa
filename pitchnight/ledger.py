"""
投票账本

每个（活动, 组, 投票者）最多一张投票；重复提交视为更新而非冲突。
所有读取都直接来自已存储的评分，不做内存缓存。
"""
import sqlite3
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .config import MAX_STARS, MIN_STARS
from .errors import ValidationError
from .identity import VoterIdentity
from .storage import (
    fetch_categories,
    fetch_event,
    fetch_group,
    fetch_hosted_event,
    fetch_votes,
    find_vote_id,
    get_conn,
    insert_vote,
)
from .utils import AuditLogger, log_operation, logger


def _validate_stars(stars) -> int:
    # bool is an int subclass; True must not count as one star
    if isinstance(stars, bool) or not isinstance(stars, int):
        raise ValidationError(f"Star rating must be an integer, got {stars!r}")
    if not MIN_STARS <= stars <= MAX_STARS:
        raise ValidationError(f"Star rating must be between {MIN_STARS} and {MAX_STARS}, got {stars}")
    return stars


def _check_category(category_id: int, allowed: Set[int]) -> None:
    if category_id not in allowed:
        raise ValidationError(f"Category {category_id} does not belong to this event")


def _validate_ratings(ratings: Iterable[Tuple[int, int]], allowed: Set[int]) -> List[Tuple[int, int]]:
    cleaned: List[Tuple[int, int]] = []
    seen: Set[int] = set()
    for category_id, stars in ratings:
        _check_category(category_id, allowed)
        if category_id in seen:
            raise ValidationError(f"Category {category_id} rated more than once")
        seen.add(category_id)
        cleaned.append((category_id, _validate_stars(stars)))
    if not cleaned:
        raise ValidationError("At least one rating is required")
    return cleaned


def _get_or_create_vote(conn: sqlite3.Connection, event_id: int, group_id: int, voter: VoterIdentity) -> int:
    vote_id = find_vote_id(conn, event_id, group_id, voter.user_id, voter.voting_session_id)
    if vote_id is not None:
        return vote_id
    try:
        return insert_vote(conn, event_id, group_id, voter.user_id, voter.voting_session_id)
    except sqlite3.IntegrityError:
        # 同一投票者的并发首次提交已先建好投票，沿用那一张
        vote_id = find_vote_id(conn, event_id, group_id, voter.user_id, voter.voting_session_id)
        if vote_id is None:
            raise
        logger.info(f"并发建票，沿用已有投票 {vote_id} ({voter})")
        return vote_id


@log_operation("投票")
def submit_vote(
    event_id: int,
    group_id: int,
    voter: VoterIdentity,
    ratings: Iterable[Tuple[int, int]],
) -> int:
    """
    提交完整投票

    已有投票时整体替换其评分（先删后插），否则新建投票。
    整个写入在同一事务中完成；并发重复提交以最后一次为准。
    返回投票 id。
    """
    ratings = list(ratings)
    if not ratings:
        raise ValidationError("At least one rating is required")
    with get_conn() as conn:
        fetch_event(conn, event_id)
        fetch_group(conn, event_id, group_id)
        allowed = {c.id for c in fetch_categories(conn, event_id)}
        cleaned = _validate_ratings(ratings, allowed)

        vote_id = _get_or_create_vote(conn, event_id, group_id, voter)
        conn.execute("DELETE FROM ratings WHERE vote_id=?", (vote_id,))
        conn.executemany(
            "INSERT INTO ratings(vote_id, category_id, stars) VALUES(?, ?, ?)",
            [(vote_id, category_id, stars) for category_id, stars in cleaned],
        )
    AuditLogger.log_vote_submission(event_id, group_id, str(voter), len(cleaned))
    return vote_id


def auto_save_rating(
    event_id: int,
    group_id: int,
    voter: VoterIdentity,
    category_id: int,
    stars: int,
) -> int:
    """单个类别的即时保存：不要求评完所有类别，首次调用时创建投票"""
    stars = _validate_stars(stars)
    with get_conn() as conn:
        fetch_event(conn, event_id)
        fetch_group(conn, event_id, group_id)
        _check_category(category_id, {c.id for c in fetch_categories(conn, event_id)})

        vote_id = _get_or_create_vote(conn, event_id, group_id, voter)
        conn.execute(
            "INSERT INTO ratings(vote_id, category_id, stars) VALUES(?, ?, ?) "
            "ON CONFLICT(vote_id, category_id) DO UPDATE SET stars=excluded.stars",
            (vote_id, category_id, stars),
        )
    return vote_id


@log_operation("重置投票")
def reset_votes(event_id: int, actor_id: Optional[str]) -> int:
    """删除活动的全部投票与评分（仅主持人，不可恢复），返回删除的投票数"""
    with get_conn() as conn:
        fetch_hosted_event(conn, event_id, actor_id)
        conn.execute(
            "DELETE FROM ratings WHERE vote_id IN (SELECT id FROM votes WHERE event_id=?)",
            (event_id,),
        )
        deleted = conn.execute("DELETE FROM votes WHERE event_id=?", (event_id,)).rowcount
    AuditLogger.log_host_action("reset_votes", event_id, actor_id, f"votes={deleted}")
    return deleted


def get_voter_ratings(event_id: int, voter: VoterIdentity) -> Dict[int, Dict[int, int]]:
    """投票者自己已保存的评分：{group_id: {category_id: stars}}"""
    with get_conn() as conn:
        votes = fetch_votes(conn, event_id)
    return {
        v.group_id: dict(v.ratings)
        for v in votes
        if (voter.is_anonymous and v.voting_session_id == voter.voting_session_id)
        or (not voter.is_anonymous and v.user_id == voter.user_id)
    }
