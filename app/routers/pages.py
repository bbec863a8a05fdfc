"""Server-rendered voter screens.

Every page is a full template; HTMX-boosted forms swap the body and pick up
feedback effects from the ``HX-Trigger`` header.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.assignment_flow import AssignmentSession
from app.services.assignments import DELAY_OPTIONS
from app.services.errors import NotFoundError, SubmissionInProgressError, VoteValidationError
from app.services.feedback import CelebrationType, HapticPattern, NullFeedback, feedback_for
from app.services.normalizer import (
    filter_items,
    format_date_range,
    format_datetime,
    group_items_by_date,
    risk_badge,
)
from app.services.submission import VOTE_OPTIONS, vote_tone
from app.services.voting_flow import SessionRegistry, ViewState, VotingSession
from app.services.weather import build_display_window, format_hour_label

router = APIRouter(tags=["pages"])
templates = Jinja2Templates(directory="app/templates")
templates.env.globals.update(
    risk_badge=risk_badge,
    vote_tone=vote_tone,
    format_hour_label=format_hour_label,
    format_datetime=format_datetime,
)

SCREEN_TEMPLATES = {
    ViewState.LOADING: "loading.html",
    ViewState.WELCOME: "welcome.html",
    ViewState.VOTING: "voting.html",
    ViewState.SUMMARY: "summary.html",
    ViewState.ERROR: "error.html",
}


def get_registry(request: Request) -> SessionRegistry:
    registry = getattr(request.app.state, "sessions", None)
    if registry is None:
        registry = SessionRegistry()
        request.app.state.sessions = registry
    return registry


def _weather_context(session: VotingSession, index: int) -> dict:
    item = session.items[index]
    weather = session.weather.peek(item.internal_job_id)
    window = (
        build_display_window(weather.hourly, item.route_start_time, item.route_end_time)
        if weather
        else None
    )
    return {
        "item": item,
        "index": index,
        "expanded": item.key in session.expanded_weather,
        "loading": session.weather.is_loading(item.internal_job_id),
        "weather": weather,
        "window": window,
        "weather_error": session.weather_errors.get(item.internal_job_id),
        "fetched": item.internal_job_id in session.weather,
    }


async def render_screen(
    request: Request,
    session: VotingSession,
    feedback: NullFeedback,
    status_code: int = 200,
) -> HTMLResponse:
    """Render whichever screen the session is on."""
    if session.view_state == ViewState.VOTING and session.current_item is None:
        session.go_to_summary()
    if session.view_state == ViewState.SUMMARY:
        await session.load_team_votes()

    context = {
        "session": session,
        "token": session.token,
        "vote_options": VOTE_OPTIONS,
        "message": session.error,
    }
    if session.view_state == ViewState.VOTING:
        item = session.current_item
        context["item"] = item
        context["draft"] = session.draft_for(item.key)
        context["card"] = _weather_context(session, session.current_index)

    response = templates.TemplateResponse(
        request, SCREEN_TEMPLATES[session.view_state], context, status_code=status_code
    )
    return feedback.apply(response)


def _session_url(token: str) -> str:
    return f"/weather/vote/{token}"


@router.get("/weather/vote", response_class=HTMLResponse)
async def weather_vote_entry(
    request: Request,
    token: Optional[str] = Query(default=None),
    t: Optional[str] = Query(default=None),
):
    """Entry link carrying the token as ``?token=`` or ``?t=``."""
    raw = (token or t or "").strip()
    if not raw:
        return templates.TemplateResponse(
            request, "error.html", {"message": "Missing token."}
        )
    return RedirectResponse(_session_url(raw), status_code=303)


@router.get("/weather/vote/{token}", response_class=HTMLResponse)
async def weather_vote_page(
    request: Request, token: str, registry: SessionRegistry = Depends(get_registry)
):
    session = await registry.open(token)
    return await render_screen(request, session, NullFeedback())


@router.post("/weather/vote/{token}/begin", response_class=HTMLResponse)
async def weather_vote_begin(
    request: Request, token: str, registry: SessionRegistry = Depends(get_registry)
):
    session = await registry.open(token)
    feedback = feedback_for(request)
    session.begin(feedback)
    return await render_screen(request, session, feedback)


@router.post("/weather/vote/{token}/navigate", response_class=HTMLResponse)
async def weather_vote_navigate(
    request: Request,
    token: str,
    direction: str = Form(...),
    registry: SessionRegistry = Depends(get_registry),
):
    session = await registry.open(token)
    feedback = feedback_for(request)
    try:
        session.navigate(direction, feedback)
    except VoteValidationError:
        return await render_screen(request, session, feedback, status_code=400)
    return await render_screen(request, session, feedback)


@router.post("/weather/vote/{token}/vote", response_class=HTMLResponse)
async def weather_vote_submit(
    request: Request,
    token: str,
    action: str = Form(default="submit"),
    vote_value: Optional[str] = Form(default=None),
    reason: Optional[str] = Form(default=None),
    registry: SessionRegistry = Depends(get_registry),
):
    """Select an option (``action=select``) or submit the current job."""
    session = await registry.open(token)
    feedback = feedback_for(request)
    if session.view_state != ViewState.VOTING or session.current_item is None:
        return await render_screen(request, session, feedback)

    if reason is not None:
        session.set_reason(reason)
    if action == "select":
        if vote_value:
            session.select_vote(vote_value, feedback)
        return await render_screen(request, session, feedback)

    try:
        await session.submit(vote_value=vote_value, feedback=feedback)
    except SubmissionInProgressError as exc:
        session.draft_for(session.current_item.key).error = exc.message
        return await render_screen(request, session, feedback, status_code=409)
    return await render_screen(request, session, feedback)


@router.post("/weather/vote/{token}/summary", response_class=HTMLResponse)
async def weather_vote_summary(
    request: Request, token: str, registry: SessionRegistry = Depends(get_registry)
):
    session = await registry.open(token)
    feedback = feedback_for(request)
    session.go_to_summary(feedback)
    return await render_screen(request, session, feedback)


@router.post("/weather/vote/{token}/welcome", response_class=HTMLResponse)
async def weather_vote_welcome(
    request: Request, token: str, registry: SessionRegistry = Depends(get_registry)
):
    session = await registry.open(token)
    feedback = feedback_for(request)
    session.back_to_welcome(feedback)
    return await render_screen(request, session, feedback)


@router.post("/weather/vote/{token}/refresh", response_class=HTMLResponse)
async def weather_vote_refresh(
    request: Request, token: str, registry: SessionRegistry = Depends(get_registry)
):
    """Reload the context without leaving the current screen."""
    session = await registry.open(token)
    await session.load(show_loading=False, allow_view_reset=False)
    return await render_screen(request, session, feedback_for(request))


@router.get("/weather/vote/{token}/list", response_class=HTMLResponse)
async def weather_vote_list(
    request: Request,
    token: str,
    risk: str = Query(default="all"),
    q: str = Query(default=""),
    registry: SessionRegistry = Depends(get_registry),
):
    """All items grouped by forecast date, with risk and text filters."""
    session = await registry.open(token)
    if session.view_state == ViewState.ERROR:
        return await render_screen(request, session, NullFeedback())

    visible = filter_items(session.items, risk=risk, search=q)
    forecasts = await session.weather.prefetch(
        (item.internal_job_id, item.forecast_date) for item in visible
    )
    context = session.context or {}
    return templates.TemplateResponse(
        request,
        "list.html",
        {
            "session": session,
            "token": session.token,
            "groups": group_items_by_date(visible),
            "forecasts": forecasts,
            "risk": risk,
            "q": q,
            "date_range": format_date_range(
                context.get("batch_start_date") or context.get("start_date"),
                context.get("batch_end_date") or context.get("end_date"),
            ),
            "expires_at": format_datetime(context.get("expires_at")),
        },
    )


@router.get("/weather/vote/{token}/weather/{index}", response_class=HTMLResponse)
async def weather_vote_weather(
    request: Request,
    token: str,
    index: int,
    registry: SessionRegistry = Depends(get_registry),
):
    """Toggle an item's forecast strip and return the card partial."""
    session = await registry.open(token)
    try:
        await session.toggle_weather(index)
    except NotFoundError as exc:
        return HTMLResponse(exc.message, status_code=404)

    feedback = feedback_for(request)
    feedback.haptic(HapticPattern.SELECTION)
    response = templates.TemplateResponse(
        request,
        "partials/weather_card.html",
        {"token": session.token, "card": _weather_context(session, index)},
    )
    return feedback.apply(response)


# Campaign assignment page


def _render_campaign(
    request: Request, flow: AssignmentSession, feedback: NullFeedback, message: Optional[str] = None
) -> HTMLResponse:
    response = templates.TemplateResponse(
        request,
        "campaign.html",
        {
            "flow": flow,
            "token": flow.token,
            "delay_options": DELAY_OPTIONS,
            "message": message,
        },
    )
    return feedback.apply(response)


@router.get("/vote/{campaign_id}", response_class=HTMLResponse)
async def campaign_page(
    request: Request,
    campaign_id: str,
    t: str = Query(default=""),
    i: int = Query(default=0),
    db: AsyncSession = Depends(get_db),
):
    flow = AssignmentSession(db, campaign_id, t, current_index=i)
    await flow.load()
    return _render_campaign(request, flow, NullFeedback())


@router.post("/vote/{campaign_id}/choice", response_class=HTMLResponse)
async def campaign_choice(
    request: Request,
    campaign_id: str,
    t: str = Form(default=""),
    i: int = Form(default=0),
    assignment_id: str = Form(...),
    vote: Optional[str] = Form(default=None),
    delay_minutes: Optional[int] = Form(default=None),
    comment: Optional[str] = Form(default=None),
    db: AsyncSession = Depends(get_db),
):
    flow = AssignmentSession(db, campaign_id, t, current_index=i)
    feedback = feedback_for(request)
    message = None
    if await flow.load():
        try:
            await flow.set_choice(assignment_id, vote, delay_minutes, comment)
            feedback.haptic(HapticPattern.MEDIUM)
        except NotFoundError as exc:
            message = exc.message
    return _render_campaign(request, flow, feedback, message)


@router.post("/vote/{campaign_id}/navigate", response_class=HTMLResponse)
async def campaign_navigate(
    request: Request,
    campaign_id: str,
    t: str = Form(default=""),
    i: int = Form(default=0),
    direction: str = Form(...),
    db: AsyncSession = Depends(get_db),
):
    flow = AssignmentSession(db, campaign_id, t, current_index=i)
    feedback = feedback_for(request)
    message = None
    if await flow.load():
        try:
            flow.navigate(direction)
            feedback.haptic(HapticPattern.LIGHT)
        except VoteValidationError as exc:
            message = exc.message
    return _render_campaign(request, flow, feedback, message)


@router.post("/vote/{campaign_id}/submit-all", response_class=HTMLResponse)
async def campaign_submit_all(
    request: Request,
    campaign_id: str,
    t: str = Form(default=""),
    db: AsyncSession = Depends(get_db),
):
    flow = AssignmentSession(db, campaign_id, t)
    feedback = feedback_for(request)
    message = None
    if await flow.load():
        try:
            if await flow.submit_all():
                feedback.haptic(HapticPattern.SUCCESS)
                feedback.celebrate(CelebrationType.EPIC, particles=80)
        except VoteValidationError as exc:
            message = exc.message
            feedback.haptic(HapticPattern.WARNING)
    return _render_campaign(request, flow, feedback, message)
