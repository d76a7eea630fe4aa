import csv
import io
import secrets
from typing import Optional

from fastapi import Cookie, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from itsdangerous import BadSignature, URLSafeSerializer

from . import config
from .errors import PitchNightError
from .identity import (
    VoterIdentity,
    active_participants,
    create_voting_session,
    remove_participant,
    remove_voting_session,
    resolve_voter_identity,
)
from .ledger import auto_save_rating, get_voter_ratings, reset_votes, submit_vote
from .live import (
    activate_if_host_viewing,
    back_to_presentations,
    pause_timer,
    reorder_presentations,
    resume_timer,
    reveal_winner,
    set_current_presentation,
    show_winners,
    start_timer,
    stop_timer,
    timer_snapshot,
    trigger_confetti,
    update_categories,
    voting_progress,
)
from .models import (
    AutoSaveInput,
    CategoriesInput,
    CurrentPresentationInput,
    EventInput,
    GroupInput,
    OrderInput,
    ProgressResponse,
    RevealInput,
    SessionInput,
    TimerInput,
    VoteInput,
)
from .scoring import leaderboard_csv_rows, load_leaderboard
from .storage import (
    _now,
    add_group,
    create_event,
    get_event,
    get_event_by_code,
    init_db,
    join_group,
    list_categories,
    list_groups,
    submit_presentation,
)
from .utils import logger


app = FastAPI(title=config.APP_NAME)

_session_secret = (
    secrets.token_urlsafe(48)
    if not config.SESSION_SECRET or config.SESSION_SECRET == "please-set-session-secret"
    else config.SESSION_SECRET
)
SESSION_SIGNER = URLSafeSerializer(_session_secret)


@app.on_event("startup")
def _startup() -> None:
    init_db()


@app.exception_handler(PitchNightError)
async def _pitchnight_error(request: Request, exc: PitchNightError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.message})


def issue_user_cookie(response: Response, user_id: str) -> None:
    token = SESSION_SIGNER.dumps({"user_id": str(user_id), "created": _now().isoformat()})
    response.set_cookie(config.SESSION_COOKIE_NAME, token, max_age=60 * 60 * 24 * 7, httponly=True)


def current_user_id(user_cookie: Optional[str]) -> Optional[str]:
    """从签名 Cookie 中取出登录用户 id；无效或缺失返回 None"""
    if not user_cookie:
        return None
    try:
        data = SESSION_SIGNER.loads(user_cookie)
    except BadSignature:
        logger.warning("收到无效的用户 Cookie")
        return None
    return data.get("user_id") if isinstance(data, dict) else None


def _voter(
    event_id: int,
    user_cookie: Optional[str],
    session: Optional[str],
    name: Optional[str] = None,
) -> VoterIdentity:
    return resolve_voter_identity(
        event_id,
        user_id=current_user_id(user_cookie),
        session_code=session,
        display_name=name,
    )


# ============= 登录（外部认证服务的简化替身） =============

@app.get("/login")
def login(user_id: str, key: str):
    if key != config.LOGIN_KEY:
        raise HTTPException(status_code=403, detail="Invalid login key")
    redirect = RedirectResponse(url="/", status_code=303)
    issue_user_cookie(redirect, user_id)
    return redirect


@app.get("/")
def index():
    return {"app": config.APP_NAME}


# ============= 活动 =============

@app.post("/events")
def new_event(body: EventInput, user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME)):
    user_id = current_user_id(user)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    event = create_event(
        body.name,
        user_id,
        [c.model_dump() for c in body.categories],
        submission_deadline=body.submission_deadline,
    )
    return {"ok": True, "event_id": event.id, "join_code": event.join_code}


@app.get("/join/{code}")
def join_by_code(code: str):
    event = get_event_by_code(code)
    return {"event_id": event.id, "name": event.name}


@app.get("/events/{event_id}/live")
def live_view(
    event_id: int,
    session: Optional[str] = None,
    user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME),
):
    """现场页数据：主持人首次访问时活动进入 live"""
    user_id = current_user_id(user)
    event = activate_if_host_viewing(event_id, user_id)

    voter = None
    if user_id or session:
        voter = _voter(event_id, user, session)

    return {
        "event": event.to_dict(),
        "is_host": bool(user_id) and event.host_id == user_id,
        "categories": [c.to_dict() for c in list_categories(event_id)],
        "groups": [g.to_dict() for g in list_groups(event_id)],
        "timer": timer_snapshot(event),
        "participants": active_participants(event_id).to_dict(),
        "progress": ProgressResponse(**voting_progress(event_id)).model_dump(),
        "my_votes": get_voter_ratings(event_id, voter) if voter else {},
        "leaderboard": load_leaderboard(event_id).to_dict(),
    }


@app.post("/events/{event_id}/categories")
def replace_categories(
    event_id: int,
    body: CategoriesInput,
    user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME),
):
    update_categories(event_id, current_user_id(user), [c.model_dump() for c in body.categories])
    return {"ok": True}


# ============= 组别 =============

@app.post("/events/{event_id}/groups")
def new_group(
    event_id: int,
    body: GroupInput,
    user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME),
):
    user_id = current_user_id(user)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    group = add_group(event_id, body.name, leader_id=user_id)
    return {"ok": True, "group": group.to_dict()}


@app.post("/events/{event_id}/groups/{group_id}/join")
def join(event_id: int, group_id: int, user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME)):
    user_id = current_user_id(user)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    join_group(event_id, group_id, user_id)
    return {"ok": True}


@app.post("/events/{event_id}/groups/{group_id}/submit")
def submit_group(event_id: int, group_id: int, user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME)):
    user_id = current_user_id(user)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    group = submit_presentation(event_id, group_id, user_id)
    return {"ok": True, "group": group.to_dict()}


@app.post("/events/{event_id}/presentation-order")
def save_order(
    event_id: int,
    body: OrderInput,
    user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME),
):
    reorder_presentations(event_id, current_user_id(user), body.order)
    return {"ok": True}


@app.post("/events/{event_id}/current-presentation")
def current_presentation(
    event_id: int,
    body: CurrentPresentationInput,
    user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME),
):
    event = set_current_presentation(event_id, current_user_id(user), body.group_id)
    return {"ok": True, "current_presentation_id": event.current_presentation_id}


# ============= 匿名投票会话 =============

@app.post("/events/{event_id}/sessions")
def new_voting_session(event_id: int, body: SessionInput):
    session = create_voting_session(event_id, body.display_name)
    return {"ok": True, "session_code": session.session_code}


@app.delete("/events/{event_id}/sessions/{session_id}")
def delete_voting_session(
    event_id: int,
    session_id: int,
    user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME),
):
    remove_voting_session(event_id, current_user_id(user), session_id)
    return {"ok": True}


@app.delete("/events/{event_id}/participants/{user_id}")
def delete_participant(
    event_id: int,
    user_id: str,
    user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME),
):
    deleted = remove_participant(event_id, current_user_id(user), user_id)
    return {"ok": True, "deleted_groups": deleted}


# ============= 投票 =============

@app.post("/events/{event_id}/votes")
def vote(
    event_id: int,
    body: VoteInput,
    session: Optional[str] = None,
    name: Optional[str] = None,
    user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME),
):
    """投票；匿名投票者可用 session 码，或首次以 name 直接建立会话"""
    voter = _voter(event_id, user, session, name)
    vote_id = submit_vote(event_id, body.group_id, voter, [(r.category_id, r.stars) for r in body.ratings])
    return {"ok": True, "vote_id": vote_id, "session_code": voter.session_code}


@app.post("/events/{event_id}/votes/autosave")
def autosave(
    event_id: int,
    body: AutoSaveInput,
    session: Optional[str] = None,
    name: Optional[str] = None,
    user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME),
):
    voter = _voter(event_id, user, session, name)
    vote_id = auto_save_rating(event_id, body.group_id, voter, body.category_id, body.stars)
    return {"ok": True, "vote_id": vote_id, "session_code": voter.session_code}


@app.post("/events/{event_id}/votes/reset")
def reset(event_id: int, user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME)):
    deleted = reset_votes(event_id, current_user_id(user))
    return {"ok": True, "deleted": deleted}


@app.get("/events/{event_id}/progress", response_model=ProgressResponse)
def progress(event_id: int):
    """当前发表的投票进度"""
    return voting_progress(event_id)


# ============= 排行榜 =============

@app.get("/events/{event_id}/leaderboard")
def leaderboard(event_id: int):
    return load_leaderboard(event_id).to_dict()


@app.get("/events/{event_id}/leaderboard.csv")
def export_csv(event_id: int, user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME)) -> StreamingResponse:
    event = get_event(event_id)
    if event.host_id != current_user_id(user):
        raise HTTPException(status_code=403, detail="Only the event host can export results")
    categories = list_categories(event_id)
    buffer = io.StringIO()
    csv.writer(buffer).writerows(leaderboard_csv_rows(load_leaderboard(event_id), categories))
    data = buffer.getvalue().encode("utf-8")
    return StreamingResponse(iter([data]), media_type="text/csv")


# ============= 计时器 =============

@app.post("/events/{event_id}/timer/start")
def timer_start(event_id: int, body: TimerInput, user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME)):
    event = start_timer(event_id, current_user_id(user), body.minutes)
    return {"ok": True, "timer": timer_snapshot(event)}


@app.post("/events/{event_id}/timer/pause")
def timer_pause(event_id: int, user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME)):
    event = pause_timer(event_id, current_user_id(user))
    return {"ok": True, "timer": timer_snapshot(event)}


@app.post("/events/{event_id}/timer/resume")
def timer_resume(event_id: int, user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME)):
    event = resume_timer(event_id, current_user_id(user))
    return {"ok": True, "timer": timer_snapshot(event)}


@app.post("/events/{event_id}/timer/stop")
def timer_stop(event_id: int, user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME)):
    event = stop_timer(event_id, current_user_id(user))
    return {"ok": True, "timer": timer_snapshot(event)}


@app.get("/events/{event_id}/timer")
def timer(event_id: int):
    return timer_snapshot(get_event(event_id))


# ============= 获奖揭晓 =============

@app.post("/events/{event_id}/winners/show")
def winners_show(event_id: int, user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME)):
    event = show_winners(event_id, current_user_id(user))
    return {"ok": True, "event": event.to_dict()}


@app.post("/events/{event_id}/winners/reveal")
def winners_reveal(event_id: int, body: RevealInput, user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME)):
    event = reveal_winner(event_id, current_user_id(user), body.step)
    return {"ok": True, "winners_reveal_step": event.winners_reveal_step}


@app.post("/events/{event_id}/winners/back")
def winners_back(event_id: int, user: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE_NAME)):
    event = back_to_presentations(event_id, current_user_id(user))
    return {"ok": True, "event": event.to_dict()}


@app.post("/events/{event_id}/confetti")
def confetti(event_id: int):
    event = trigger_confetti(event_id)
    return {"ok": True, "confetti_count": event.confetti_count}
