"""JSON API for the token-only weather-vote flow."""

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from app.routers.common import clean_str, error_response, message_response, read_json_payload
from app.services.backend_rpc import backend_client
from app.services.errors import NotFoundError, VoteError, VoteValidationError
from app.services.normalizer import item_key
from app.services.submission import submit_weather_vote

router = APIRouter(prefix="/api/weather-vote", tags=["weather-vote"])


@router.post("/context")
async def get_context(request: Request) -> JSONResponse:
    """Full voting context for a token.

    Any backend rejection is reported as 401 so the page shows the
    "request a new link" screen.
    """
    try:
        payload = await read_json_payload(request)
    except VoteValidationError as exc:
        return error_response(exc)

    token = clean_str(payload.get("token"))
    if not token:
        return message_response("Token is required.", 400)

    try:
        context = await backend_client.get_context(token)
    except NotFoundError as exc:
        return error_response(exc, 404)
    except VoteError as exc:
        return error_response(exc, 401)

    return JSONResponse(content={"context": context})


@router.post("/submit")
async def submit_vote(request: Request) -> JSONResponse:
    """Store one vote and return the backend's canonical row."""
    try:
        payload = await read_json_payload(request)
    except VoteValidationError as exc:
        return error_response(exc)

    token = clean_str(payload.get("token"))
    vote_value = clean_str(payload.get("voteValue"))
    internal_job_id = payload.get("internalJobId")
    if not token or not vote_value or internal_job_id is None:
        return message_response("token, internalJobId, and voteValue are required.", 400)

    try:
        key = item_key(internal_job_id, payload.get("forecastDate"), payload.get("lensId"))
    except (TypeError, ValueError):
        return message_response("internalJobId must be a number.", 400)

    try:
        submitted = await submit_weather_vote(
            backend_client,
            token,
            key,
            vote_value,
            payload.get("voteReason"),
            require_reason=False,
        )
    except VoteError as exc:
        return error_response(exc, 400)

    vote = submitted.vote
    result = {
        "internal_job_id": vote.internal_job_id,
        "forecast_date": vote.forecast_date or None,
        "lens_id": vote.lens_id or None,
        "vote_value": vote.vote_value,
        "vote_reason": vote.vote_reason,
        "voted_at": vote.voted_at,
        **submitted.reported_counts,
    }
    return JSONResponse(content={"result": result})


@router.post("/job-votes")
async def get_job_votes(request: Request) -> JSONResponse:
    """Every voter's vote on one item."""
    try:
        payload = await read_json_payload(request)
    except VoteValidationError as exc:
        return error_response(exc)

    token = clean_str(payload.get("token"))
    internal_job_id = payload.get("internalJobId")
    forecast_date = clean_str(payload.get("forecastDate"))
    lens_id = clean_str(payload.get("lensId"))
    if not token or internal_job_id is None or not forecast_date or not lens_id:
        return message_response(
            "token, internalJobId, forecastDate, and lensId are required.", 400
        )

    try:
        key = item_key(internal_job_id, forecast_date, lens_id)
    except (TypeError, ValueError):
        return message_response("internalJobId must be a number.", 400)

    try:
        votes = await backend_client.get_job_votes(token, key)
    except VoteError as exc:
        return error_response(exc, 400)

    return JSONResponse(content={"votes": votes})


@router.get("/job-weather")
async def get_job_weather(
    job_id: str = Query(default=None, alias="jobId"),
    forecast_date: str = Query(default=None, alias="forecastDate"),
) -> JSONResponse:
    """Hourly forecast for one job on one date."""
    job_id = clean_str(job_id)
    forecast_date = clean_str(forecast_date)
    if not job_id or not forecast_date:
        return message_response("jobId and forecastDate are required.", 400)

    try:
        parsed_job_id = int(job_id)
    except ValueError:
        return message_response("jobId must be a number.", 400)

    try:
        weather = await backend_client.get_job_weather(parsed_job_id, forecast_date)
    except VoteError as exc:
        return error_response(exc, 500)

    if weather is None:
        return message_response("No hourly weather found", 404)

    return JSONResponse(content={"weather": weather.to_payload()})
