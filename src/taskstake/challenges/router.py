"""Daily and player challenge endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from taskstake.auth.dependencies import get_current_user
from taskstake.challenges import daily_service, player_service
from taskstake.challenges.schemas import (
    DailyChallengeCreateRequest,
    DailyChallengeResponse,
    DailyChallengeStatusResponse,
    PlayerChallengeCreateRequest,
    PlayerChallengeListResponse,
    PlayerChallengeRespondRequest,
    PlayerChallengeResponse,
)
from taskstake.database import get_session
from taskstake.db.models import DailyChallenge, User
from taskstake.errors import NotFound
from taskstake.ledger.service import get_balance
from taskstake.redis_client import get_optional_redis

router = APIRouter(prefix="/api/v1/challenges", tags=["Challenges"])


def daily_response(challenge: DailyChallenge) -> DailyChallengeResponse:
    response = DailyChallengeResponse.model_validate(challenge)
    return response.model_copy(update=daily_service.challenge_progress(challenge))


# ── Daily ──


@router.get("/daily", response_model=DailyChallengeStatusResponse)
async def get_daily(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    """Most recent daily challenge, with progress recounted and settlement applied."""
    challenge = await daily_service.get_current_challenge(db, redis, user.id)
    balance = await get_balance(db, user.id)
    return DailyChallengeStatusResponse(
        challenge=daily_response(challenge) if challenge is not None else None,
        balance=balance,
        max_bet=daily_service.max_bet(balance),
    )


@router.post("/daily", response_model=DailyChallengeResponse, status_code=201)
async def post_daily(
    body: DailyChallengeCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    challenge = await daily_service.create_challenge(db, redis, user.id, body.target_tasks, body.points_bet)
    return daily_response(challenge)


# ── Player ──


@router.get("/player", response_model=PlayerChallengeListResponse)
async def get_player_challenges(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    """Incoming and outgoing challenges. Challenges past their window are finalized first."""
    result = await player_service.list_challenges(db, redis, user.id)
    return PlayerChallengeListResponse(
        incoming=[PlayerChallengeResponse.model_validate(c) for c in result["incoming"]],
        outgoing=[PlayerChallengeResponse.model_validate(c) for c in result["outgoing"]],
    )


@router.post("/player", response_model=PlayerChallengeResponse, status_code=201)
async def post_player_challenge(
    body: PlayerChallengeCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    challenge = await player_service.create_challenge(db, redis, user.id, body.challenged_id, body.points_bet)
    return PlayerChallengeResponse.model_validate(challenge)


@router.post("/player/{challenge_id}/respond", response_model=PlayerChallengeResponse)
async def post_respond(
    challenge_id: str,
    body: PlayerChallengeRespondRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    challenge = await player_service.respond_to_challenge(db, redis, challenge_id, user.id, body.accept)
    return PlayerChallengeResponse.model_validate(challenge)


@router.post("/player/{challenge_id}/settle", response_model=PlayerChallengeResponse)
async def post_settle(
    challenge_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    """Settle a finished challenge. Either party may call; repeats return the settled record."""
    challenge = await player_service.get_challenge(db, challenge_id)
    if user.id not in (challenge.challenger_id, challenge.challenged_id):
        msg = f"Challenge {challenge_id} not found"
        raise NotFound(msg)
    challenge = await player_service.settle_challenge(db, redis, challenge_id)
    return PlayerChallengeResponse.model_validate(challenge)
