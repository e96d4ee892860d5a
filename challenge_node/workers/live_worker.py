from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Annotated, Any, AsyncIterator, Callable, Generator

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from challenge_node.config.runtime import RuntimeSettings
from challenge_node.db import (
    DBChallengeRepository,
    DBCriterionRepository,
    DBParticipantRepository,
    DBPerformanceRepository,
    DBRewardRepository,
    DBStarRepository,
    DBTierRepository,
    DBUserRepository,
    DBWinnerRepository,
    create_session,
    listen,
    parse_mutation_payload,
)
from challenge_node.entities.challenge import MutationKind, Performance, utc_now
from challenge_node.errors import NotFoundError
from challenge_node.schemas import (
    LeaderboardUpdate, PerformanceIn, PerformanceUpdateIn, StatsUpdate,
    build_leaderboard_update, build_stats_update,
)
from challenge_node.services.live_updates import ERROR, LiveUpdateBroker
from challenge_node.services.ranking import RankingEngine, StarStanding, StarWindow
from challenge_node.services.recalculation import RecalculationCoordinator
from challenge_node.services.rewards import RewardEngine
from challenge_node.services.score import ScoreEngine
from challenge_node.transport.websocket import WebSocketConnection

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        force=True,
    )


@dataclass
class LiveServices:
    settings: RuntimeSettings
    users: DBUserRepository
    challenges: DBChallengeRepository
    participants: DBParticipantRepository
    performances: DBPerformanceRepository
    score_engine: ScoreEngine
    ranking_engine: RankingEngine
    reward_engine: RewardEngine
    broker: LiveUpdateBroker
    coordinator: RecalculationCoordinator
    session_factory: Callable[[], Session] = create_session

    def rollback(self) -> None:
        # every repository shares one session, any of them rolls it back
        self.participants.rollback()


def build_score_engine(session: Session) -> ScoreEngine:
    return ScoreEngine(
        participant_repository=DBParticipantRepository(session),
        performance_repository=DBPerformanceRepository(session),
        criterion_repository=DBCriterionRepository(session),
    )


def build_ranking_engine(session: Session, settings: RuntimeSettings) -> RankingEngine:
    return RankingEngine(
        participant_repository=DBParticipantRepository(session),
        user_repository=DBUserRepository(session),
        winner_repository=DBWinnerRepository(session),
        challenge_repository=DBChallengeRepository(session),
        finalization_mode=settings.finalization_mode,
        star_repository=DBStarRepository(session),
    )


def build_reward_engine(session: Session, settings: RuntimeSettings) -> RewardEngine:
    return RewardEngine(
        performance_repository=DBPerformanceRepository(session),
        participant_repository=DBParticipantRepository(session),
        star_repository=DBStarRepository(session),
        tier_repository=DBTierRepository(session),
        reward_repository=DBRewardRepository(session),
        star_value_divisor=settings.star_value_divisor,
        finalization_mode=settings.finalization_mode,
    )


def build_services(session: Session | None = None, settings: RuntimeSettings | None = None) -> LiveServices:
    """Long-lived services for the mutation path and the live channel. Read-only
    routes open their own session through `session_factory`."""
    settings = settings or RuntimeSettings.from_env()
    if session is None:
        session = create_session()
        session_factory = create_session
    else:
        bind = session.get_bind()
        session_factory = lambda: Session(bind)  # noqa: E731

    score_engine = build_score_engine(session)
    ranking_engine = build_ranking_engine(session, settings)
    broker = LiveUpdateBroker(
        ranking_engine,
        subscribe_snapshot_delay_seconds=settings.subscribe_snapshot_delay_seconds,
        send_timeout_seconds=settings.send_timeout_seconds,
        outbox_limit=settings.outbox_limit,
    )
    return LiveServices(
        settings=settings,
        users=DBUserRepository(session),
        challenges=DBChallengeRepository(session),
        participants=DBParticipantRepository(session),
        performances=DBPerformanceRepository(session),
        score_engine=score_engine,
        ranking_engine=ranking_engine,
        reward_engine=build_reward_engine(session, settings),
        broker=broker,
        coordinator=RecalculationCoordinator(score_engine, broker),
        session_factory=session_factory,
    )


async def consume_mutations(services: LiveServices, channel: str) -> None:
    """Feed NOTIFY'd performance mutations from other processes into the coordinator."""
    logger.info("listening for performance mutations on channel %s", channel)
    async for _, payload in listen(channel):
        try:
            participant_id, action = parse_mutation_payload(payload)
        except ValueError as exc:
            logger.warning("skipping malformed mutation payload %r: %s", payload, exc)
            continue

        try:
            await services.coordinator.on_performance_mutated(participant_id, action)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("mutation handling failed for payload %r: %s", payload, exc)
            services.rollback()


def create_app(services: LiveServices | None = None, listen_for_mutations: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        live = services or build_services()
        app.state.services = live

        listener: asyncio.Task | None = None
        if listen_for_mutations:
            listener = asyncio.create_task(consume_mutations(live, live.settings.mutation_channel))
        logger.info("live worker started")
        try:
            yield
        finally:
            if listener is not None:
                listener.cancel()
                try:
                    await listener
                except asyncio.CancelledError:
                    pass
                except Exception as exc:
                    logger.warning("mutation listener ended with error: %s", exc)
            await live.broker.shutdown()
            logger.info("live worker stopped")

    app = FastAPI(title="Challenge Node Live Worker", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SQLAlchemyError)
    async def rollback_on_store_failure(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("storage failure on %s %s: %s", request.method, request.url.path, exc)
        request.app.state.services.rollback()
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "storage failure"})

    register_routes(app)
    return app


def get_services(request: Request) -> LiveServices:
    return request.app.state.services


Services = Annotated[LiveServices, Depends(get_services)]


def get_db_session(request: Request) -> Generator[Session, Any, None]:
    with get_services(request).session_factory() as session:
        yield session


DbSession = Annotated[Session, Depends(get_db_session)]


def get_ranking_engine(session_db: DbSession, services: Services) -> RankingEngine:
    return build_ranking_engine(session_db, services.settings)


def get_reward_engine(session_db: DbSession, services: Services) -> RewardEngine:
    return build_reward_engine(session_db, services.settings)


def get_user_repository(session_db: DbSession) -> DBUserRepository:
    return DBUserRepository(session_db)


Ranking = Annotated[RankingEngine, Depends(get_ranking_engine)]


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _encode_details(details: dict[str, Any] | str | None) -> str | None:
    if details is None or isinstance(details, str):
        return details
    return json.dumps(details)


def _performance_dict(performance: Performance) -> dict[str, Any]:
    return {
        "id": performance.id,
        "participantId": performance.participant_id,
        "criterionId": performance.criterion_id,
        "value": performance.value,
        "rank": performance.rank,
        "details": performance.details,
        "createdAt": performance.created_at.isoformat(),
    }


def register_routes(app: FastAPI) -> None:
    @app.get("/healthz")
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/challenges/{challenge_id}/leaderboard")
    def get_leaderboard(
        challenge_id: str,
        session_db: DbSession,
        ranking: Ranking,
        recompute: Annotated[bool, Query()] = False,
    ) -> LeaderboardUpdate:
        if recompute:
            build_score_engine(session_db).recompute_challenge(challenge_id)
        entries = ranking.compute_leaderboard(challenge_id)
        return build_leaderboard_update(challenge_id, entries)

    @app.get("/challenges/{challenge_id}/stats")
    def get_stats(challenge_id: str, ranking: Ranking) -> StatsUpdate:
        entries = ranking.compute_leaderboard(challenge_id)
        return build_stats_update(challenge_id, ranking.compute_statistics(entries))

    @app.post("/challenges/{challenge_id}/winners")
    def post_winners(
        challenge_id: str,
        services: Services,
        ranking: Ranking,
        count: Annotated[int | None, Query(ge=1)] = None,
    ) -> list[dict[str, Any]]:
        try:
            winners = ranking.select_winners(
                challenge_id, count or services.settings.default_winner_count,
            )
        except NotFoundError as exc:
            raise _not_found(exc) from exc
        return [
            {"id": w.id, "userId": w.user_id, "challengeId": w.challenge_id, "rank": w.rank}
            for w in winners
        ]

    @app.post("/performances", status_code=status.HTTP_201_CREATED)
    async def create_performance(body: PerformanceIn, services: Services) -> dict[str, Any]:
        participant = services.participants.get(body.participantId)
        if participant is None:
            raise _not_found(NotFoundError("participant", body.participantId))

        performance = Performance(
            id=body.id or f"PERF_{uuid.uuid4().hex}",
            participant_id=body.participantId,
            value=body.value,
            criterion_id=body.criterionId,
            rank=body.rank,
            details=_encode_details(body.details),
            created_at=utc_now(),
        )
        services.performances.save(performance)

        total = await services.coordinator.on_performance_mutated(participant.id, MutationKind.CREATE)
        stars = services.reward_engine.grant_stars_for_performance(performance.id)
        rewards = services.reward_engine.evaluate_tier_unlocks(participant.user_id)
        return {
            "performance": _performance_dict(performance),
            "totalScore": total,
            "starsGranted": stars,
            "rewards": [{"id": r.id, "tierId": r.tier_id, "type": r.type} for r in rewards],
        }

    @app.put("/performances/{performance_id}")
    async def update_performance(
        performance_id: str, body: PerformanceUpdateIn, services: Services,
    ) -> dict[str, Any]:
        performance = services.performances.get(performance_id)
        if performance is None:
            raise _not_found(NotFoundError("performance", performance_id))

        if body.criterionId is not None:
            performance.criterion_id = body.criterionId
        if body.value is not None:
            performance.value = body.value
        if body.rank is not None:
            performance.rank = body.rank
        if body.details is not None:
            performance.details = _encode_details(body.details)
        services.performances.save(performance)

        total = await services.coordinator.on_performance_mutated(performance.participant_id, MutationKind.UPDATE)
        return {"performance": _performance_dict(performance), "totalScore": total}

    @app.delete("/performances/{performance_id}")
    async def delete_performance(performance_id: str, services: Services) -> dict[str, Any]:
        performance = services.performances.get(performance_id)
        if performance is None:
            raise _not_found(NotFoundError("performance", performance_id))

        services.performances.delete(performance_id)
        total = await services.coordinator.on_performance_mutated(performance.participant_id, MutationKind.DELETE)
        return {"deleted": performance_id, "totalScore": total}

    @app.get("/users/{user_id}/tier-progress")
    def get_tier_progress(
        user_id: str,
        user_repo: Annotated[DBUserRepository, Depends(get_user_repository)],
        reward_engine: Annotated[RewardEngine, Depends(get_reward_engine)],
    ) -> dict[str, Any]:
        if user_repo.get(user_id) is None:
            raise _not_found(NotFoundError("user", user_id))

        progress = reward_engine.tier_progress(user_id)
        return {
            "userId": progress.user_id,
            "etoiles": progress.balance,
            "palierActuel": _tier_dict(progress.current),
            "prochainPalier": _tier_dict(progress.next),
            "etoilesRestantes": progress.stars_to_next,
            "progression": round(progress.progress_pct, 2),
        }

    @app.get("/leaderboard/position/{user_id}")
    def get_star_position(
        user_id: str,
        ranking: Ranking,
        window: Annotated[StarWindow, Query(alias="type")] = StarWindow.GLOBAL,
    ) -> dict[str, Any]:
        try:
            standing = ranking.user_position(user_id, since=window.since())
        except NotFoundError as exc:
            raise _not_found(exc) from exc
        return {"userId": user_id, "type": str(window), "position": standing.rank, "score": standing.stars}

    @app.get("/leaderboard/{window}")
    def get_star_leaderboard(
        window: StarWindow,
        ranking: Ranking,
        limit: Annotated[int, Query(ge=1, le=500)] = 50,
    ) -> dict[str, Any]:
        standings = ranking.star_leaderboard(since=window.since(), limit=limit)
        return {
            "type": str(window),
            "period": window.period,
            "classement": [_standing_dict(standing) for standing in standings],
        }

    @app.get("/live/connections")
    async def get_live_connections(services: Services) -> dict[str, Any]:
        return services.broker.connection_stats()

    @app.websocket("/ws")
    async def live_socket(websocket: WebSocket) -> None:
        services: LiveServices = websocket.app.state.services
        broker = services.broker

        await websocket.accept()
        connection = WebSocketConnection(websocket)
        broker.connect(connection)
        try:
            while True:
                try:
                    broker.handle_message(connection, await connection.receive())
                except (ValidationError, ValueError) as exc:
                    logger.warning("rejected frame from %s: %s", connection.connection_id, exc)
                    broker.send_to(connection, ERROR, {"message": str(exc)})
        except WebSocketDisconnect:
            pass
        finally:
            broker.on_disconnect(connection)


def _tier_dict(tier) -> dict[str, Any] | None:
    if tier is None:
        return None
    return {"id": tier.id, "nom": tier.name, "etoilesMin": tier.min_stars, "description": tier.description}


def _standing_dict(standing: StarStanding) -> dict[str, Any]:
    user = standing.user
    return {
        "rang": standing.rank,
        "utilisateur": {"id": user.id, "nom": user.name, "email": user.email, "role": user.role},
        "stats": {
            "totalEtoiles": standing.stars,
            "challengesParticipes": standing.challenges_joined,
            "challengesGagnes": standing.challenges_won,
            "tauxReussite": standing.success_rate,
        },
    }


app = create_app()


def main() -> None:
    settings = RuntimeSettings.from_env()
    configure_logging(settings.log_level)
    logger.info("live worker bootstrap")
    uvicorn.run(app, host=settings.live_worker_host, port=settings.live_worker_port)


if __name__ == "__main__":
    main()
