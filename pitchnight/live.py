"""
现场状态：活动生命周期、当前发表、计时器、获奖揭晓与彩带

计时器只保存时间戳（开始时间/时长/暂停时间/暂停剩余），
剩余时间在每次读取时由当前时间推算，进程内不做任何计时。
"""
import math
from datetime import datetime
from typing import List, Optional

from .errors import TimerStateError, ValidationError
from .identity import active_participants
from .scoring import is_complete
from .storage import (
    Event,
    _now,
    fetch_categories,
    fetch_event,
    fetch_group,
    fetch_groups,
    fetch_hosted_event,
    fetch_votes,
    get_conn,
    insert_categories,
    update_event,
)
from .utils import AuditLogger, clean_name, log_operation

TIMER_STOPPED = "stopped"
TIMER_RUNNING = "running"
TIMER_PAUSED = "paused"


# ============= 计时器（纯函数） =============

def timer_state(event: Event) -> str:
    if event.timer_paused_at is not None:
        return TIMER_PAUSED
    if event.timer_started_at is not None:
        return TIMER_RUNNING
    return TIMER_STOPPED


def elapsed_seconds(started_at: datetime, now: datetime) -> int:
    return max(0, math.floor((now - started_at).total_seconds()))


def timer_remaining(event: Event, now: datetime) -> Optional[int]:
    """剩余秒数；计时器停止时为 None"""
    state = timer_state(event)
    if state == TIMER_PAUSED:
        return event.timer_paused_remaining
    if state == TIMER_RUNNING:
        return max(0, (event.timer_duration or 0) - elapsed_seconds(event.timer_started_at, now))
    return None


def timer_snapshot(event: Event, now: Optional[datetime] = None) -> dict:
    now = now or _now()
    return {
        "state": timer_state(event),
        "duration": event.timer_duration,
        "remaining": timer_remaining(event, now),
        "started_at": event.timer_started_at.isoformat() if event.timer_started_at else None,
    }


# ============= 计时器操作（仅主持人） =============

@log_operation("计时器")
def start_timer(event_id: int, actor_id: Optional[str], minutes: int, now: Optional[datetime] = None) -> Event:
    """开始计时；覆盖之前的任何计时"""
    if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
        raise ValidationError("Invalid duration")
    now = now or _now()
    with get_conn() as conn:
        fetch_hosted_event(conn, event_id, actor_id)
        update_event(
            conn,
            event_id,
            timer_started_at=now,
            timer_duration=minutes * 60,
            timer_paused_at=None,
            timer_paused_remaining=None,
        )
        return fetch_event(conn, event_id)


@log_operation("计时器")
def pause_timer(event_id: int, actor_id: Optional[str], now: Optional[datetime] = None) -> Event:
    now = now or _now()
    with get_conn() as conn:
        event = fetch_hosted_event(conn, event_id, actor_id)
        if timer_state(event) != TIMER_RUNNING:
            raise TimerStateError("Timer is not running")
        remaining = timer_remaining(event, now)
        update_event(conn, event_id, timer_paused_at=now, timer_paused_remaining=remaining)
        return fetch_event(conn, event_id)


@log_operation("计时器")
def resume_timer(event_id: int, actor_id: Optional[str], now: Optional[datetime] = None) -> Event:
    now = now or _now()
    with get_conn() as conn:
        event = fetch_hosted_event(conn, event_id, actor_id)
        if timer_state(event) != TIMER_PAUSED or event.timer_paused_remaining is None:
            raise TimerStateError("Timer is not paused")
        update_event(
            conn,
            event_id,
            timer_started_at=now,
            timer_duration=event.timer_paused_remaining,
            timer_paused_at=None,
            timer_paused_remaining=None,
        )
        return fetch_event(conn, event_id)


@log_operation("计时器")
def stop_timer(event_id: int, actor_id: Optional[str]) -> Event:
    with get_conn() as conn:
        fetch_hosted_event(conn, event_id, actor_id)
        update_event(
            conn,
            event_id,
            timer_started_at=None,
            timer_duration=None,
            timer_paused_at=None,
            timer_paused_remaining=None,
        )
        return fetch_event(conn, event_id)


# ============= 活动状态 =============

def activate_if_host_viewing(event_id: int, actor_id: Optional[str]) -> Event:
    """
    主持人首次进入现场页时将活动由 setup 切换为 live

    幂等：非主持人或其它状态下不做任何修改。
    """
    with get_conn() as conn:
        event = fetch_event(conn, event_id)
        if event.status == "setup" and actor_id and event.host_id == str(actor_id):
            update_event(conn, event_id, status="live")
            AuditLogger.log_host_action("activate", event_id, actor_id)
            return fetch_event(conn, event_id)
        return event


@log_operation("揭晓")
def show_winners(event_id: int, actor_id: Optional[str]) -> Event:
    """进入获奖揭晓：状态 completed，清空当前发表，揭晓步骤归零"""
    with get_conn() as conn:
        fetch_hosted_event(conn, event_id, actor_id)
        update_event(conn, event_id, status="completed", current_presentation_id=None, winners_reveal_step=0)
        event = fetch_event(conn, event_id)
    AuditLogger.log_host_action("show_winners", event_id, actor_id)
    return event


def back_to_presentations(event_id: int, actor_id: Optional[str]) -> Event:
    with get_conn() as conn:
        fetch_hosted_event(conn, event_id, actor_id)
        update_event(conn, event_id, status="active")
        return fetch_event(conn, event_id)


def reveal_winner(event_id: int, actor_id: Optional[str], step: int) -> Event:
    """
    设置揭晓步骤

    不校验先后顺序，步骤由前端控制。
    """
    if isinstance(step, bool) or not isinstance(step, int) or step < 0:
        raise ValidationError("Reveal step must be a non-negative integer")
    with get_conn() as conn:
        fetch_hosted_event(conn, event_id, actor_id)
        update_event(conn, event_id, winners_reveal_step=step)
        return fetch_event(conn, event_id)


def trigger_confetti(event_id: int, now: Optional[datetime] = None) -> Event:
    """彩带信号：计数器递增，保证同一时间戳内的多次触发也能区分"""
    now = now or _now()
    with get_conn() as conn:
        fetch_event(conn, event_id)
        conn.execute(
            "UPDATE events SET confetti_count = confetti_count + 1, confetti_triggered_at=? WHERE id=?",
            (now.isoformat(), event_id),
        )
        return fetch_event(conn, event_id)


def set_current_presentation(event_id: int, actor_id: Optional[str], group_id: Optional[int]) -> Event:
    with get_conn() as conn:
        fetch_hosted_event(conn, event_id, actor_id)
        if group_id is not None:
            fetch_group(conn, event_id, group_id)
        update_event(conn, event_id, current_presentation_id=group_id)
        return fetch_event(conn, event_id)


# ============= 类别与发表顺序（整体替换，单事务） =============

@log_operation("类别")
def update_categories(event_id: int, actor_id: Optional[str], categories: List[dict]) -> None:
    """整体替换评分类别；被删类别上的评分随之级联删除"""
    cleaned = []
    for cat in categories:
        name = clean_name(cat.get("name") or "")
        if not name:
            raise ValidationError("Category name is required")
        cleaned.append({"name": name, "description": cat.get("description") or None})
    if not cleaned:
        raise ValidationError("At least one rating category is required")
    with get_conn() as conn:
        fetch_hosted_event(conn, event_id, actor_id)
        conn.execute("DELETE FROM categories WHERE event_id=?", (event_id,))
        insert_categories(conn, event_id, cleaned)
    AuditLogger.log_host_action("update_categories", event_id, actor_id, f"count={len(cleaned)}")


@log_operation("发表顺序")
def reorder_presentations(event_id: int, actor_id: Optional[str], group_ids: List[int]) -> None:
    if len(set(group_ids)) != len(group_ids):
        raise ValidationError("Presentation order contains duplicate groups")
    with get_conn() as conn:
        fetch_hosted_event(conn, event_id, actor_id)
        known = {g.id for g in fetch_groups(conn, event_id)}
        unknown = [gid for gid in group_ids if gid not in known]
        if unknown:
            raise ValidationError(f"Groups not in this event: {unknown}")
        conn.execute("UPDATE groups SET presentation_order=NULL WHERE event_id=?", (event_id,))
        conn.executemany(
            "UPDATE groups SET presentation_order=? WHERE id=?",
            [(position, gid) for position, gid in enumerate(group_ids)],
        )


# ============= 投票进度 =============

def voting_progress(event_id: int, now: Optional[datetime] = None) -> dict:
    """当前发表的完整投票数 / 潜在投票人数"""
    participants = active_participants(event_id, now)
    with get_conn() as conn:
        event = fetch_event(conn, event_id)
        votes_in = 0
        if event.current_presentation_id is not None:
            category_ids = [c.id for c in fetch_categories(conn, event_id)]
            votes = fetch_votes(conn, event_id, event.current_presentation_id)
            votes_in = sum(1 for v in votes if is_complete(v, category_ids))
    total = participants.count
    return {
        "current_presentation_id": event.current_presentation_id,
        "votes": votes_in,
        "potential_voters": total,
        "progress": round(min(100.0, votes_in / total * 100), 1) if total > 0 else 0.0,
    }
