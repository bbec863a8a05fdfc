"""JSON API for campaign voting links and go/delay/hold assignments."""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.routers.common import clean_str, error_response, message_response, read_json_payload
from app.services.assignments import (
    assignment_result_dict,
    assignment_to_dict,
    complete_voting,
    get_campaign_date,
    list_assignments,
    update_assignment,
)
from app.services.backend_rpc import backend_client
from app.services.errors import VoteError, VoteValidationError
from app.services.tokens import resolve_token

router = APIRouter(prefix="/api/vote", tags=["vote"])

WEATHER_PROVIDER = "open-meteo"
WEATHER_TIMEZONE = "America/Los_Angeles"


@router.post("/resolve")
async def resolve(request: Request, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """Resolve a campaign link token to the person it was issued for."""
    try:
        payload = await read_json_payload(request)
        voter = await resolve_token(db, payload.get("campaignId"), payload.get("token"))
    except VoteError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return message_response(str(exc), 500)

    return JSONResponse(content=voter.to_dict())


@router.get("/assignments")
async def get_assignments(
    campaign_id: str = Query(default=None, alias="campaignId"),
    person_id: str = Query(default=None, alias="personId"),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """A person's assignments joined with job details, by route start time."""
    campaign_id = clean_str(campaign_id)
    person_id = clean_str(person_id)
    if not campaign_id or not person_id:
        return message_response("campaignId and personId are required.", 400)

    try:
        rows = await list_assignments(db, campaign_id, person_id)
    except SQLAlchemyError as exc:
        return message_response(str(exc), 500)

    return JSONResponse(content={"assignments": [assignment_to_dict(row) for row in rows]})


@router.post("/assignments/submit")
async def submit_assignment(
    request: Request, db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    """Store a go/delay/hold vote on one assignment."""
    try:
        payload = await read_json_payload(request)
        delay_minutes = payload.get("delayMinutes", payload.get("delay_minutes"))
        if delay_minutes is not None:
            try:
                delay_minutes = int(delay_minutes)
            except (TypeError, ValueError) as exc:
                raise VoteValidationError("delay_minutes must be a number.") from exc
        assignment = await update_assignment(
            db,
            clean_str(payload.get("assignmentId")),
            clean_str(payload.get("vote")),
            delay_minutes,
            payload.get("comment"),
        )
    except VoteError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return message_response(str(exc), 500)

    return JSONResponse(content={"assignment": assignment_result_dict(assignment)})


@router.post("/assignments/complete")
async def complete(request: Request, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """Mark a person as finished with their campaign."""
    try:
        payload = await read_json_payload(request)
        await complete_voting(db, clean_str(payload.get("personId")))
    except VoteError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return message_response(str(exc), 500)

    return JSONResponse(content={"ok": True})


@router.get("/job-weather")
async def get_job_weather(
    campaign_id: str = Query(default=None, alias="campaignId"),
    internal_job_id: str = Query(default=None, alias="internalJobId"),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Hourly forecast for a job on its campaign's date."""
    campaign_id = clean_str(campaign_id)
    internal_job_id = clean_str(internal_job_id)
    if not campaign_id or not internal_job_id:
        return message_response("campaignId and internalJobId are required.", 400)

    try:
        job_id = int(internal_job_id)
    except ValueError:
        return message_response("internalJobId must be a number.", 400)

    try:
        campaign_date = await get_campaign_date(db, campaign_id)
    except VoteError as exc:
        return error_response(exc)

    forecast_date = campaign_date.isoformat()
    try:
        weather = await backend_client.get_job_weather(job_id, forecast_date)
    except VoteError as exc:
        return error_response(exc, 500)

    if weather is None:
        return message_response("No hourly weather found", 404)

    payload = weather.to_payload()
    return JSONResponse(
        content={
            "internalJobId": job_id,
            "forecastDate": forecast_date,
            "provider": WEATHER_PROVIDER,
            "timezone": WEATHER_TIMEZONE,
            "dailyHighTempF": payload["daily_high_temp_f"],
            "dailyLowTempF": payload["daily_low_temp_f"],
            "worstHour": payload["worst_hour"],
            "hourly": payload["hourly_weather"],
        }
    )
