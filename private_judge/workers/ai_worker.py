"""Worker for debate, judge and jury jobs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import uuid4

from ..jobs import JobType, utcnow
from ..models import Job, JudgeDecision, JuryVote
from ..payloads import DebateJobPayload, JudgeJobPayload, JuryBallot, JuryJobPayload, parse_payload
from ..responder import ResponderClient
from ..rounds import TOTAL_ROUNDS, DebateOrchestrator, RoundStatus, round_type_for, turn_order
from ..store import StoreFactory
from .base import JobWorker

logger = logging.getLogger(__name__)

JUROR_PROFILES: list[dict[str, Any]] = [
    {"occupation": "law student", "age_group": "20s", "perspective": "legal reasoning"},
    {"occupation": "citizen", "age_group": "40s", "perspective": "common sense"},
    {"occupation": "domain expert", "age_group": "50s", "perspective": "technical accuracy"},
    {"occupation": "university student", "age_group": "20s", "perspective": "fresh viewpoint"},
    {"occupation": "office worker", "age_group": "30s", "perspective": "practicality"},
    {"occupation": "retiree", "age_group": "60s", "perspective": "life experience"},
    {"occupation": "self-employed", "age_group": "40s", "perspective": "economic impact"},
]


class AIWorker(JobWorker):
    types = (JobType.AI_DEBATE, JobType.AI_JUDGE, JobType.AI_JURY)

    def __init__(
        self,
        store_factory: StoreFactory,
        *,
        responder: ResponderClient | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(store_factory, **kwargs)
        self.responder = responder or ResponderClient()

    async def process(self, job: Job) -> dict[str, Any]:
        handlers = {
            JobType.AI_DEBATE.value: self.run_debate,
            JobType.AI_JUDGE.value: self.run_judge,
            JobType.AI_JURY.value: self.run_jury,
        }
        handler = handlers.get(job.type)
        if handler is None:
            raise ValueError(f"AIWorker cannot handle job type {job.type}")
        return await handler(job)

    async def run_debate(self, job: Job) -> dict[str, Any]:
        payload: DebateJobPayload = parse_payload(job.type, job.payload)  # type: ignore[assignment]
        room_id = payload.room_id
        arguments = {"A": payload.argument_a, "B": payload.argument_b}
        transcript: list[dict[str, Any]] = list(payload.previous_sessions)

        for round_number in range(payload.round, TOTAL_ROUNDS + 1):
            round_type = round_type_for(round_number)
            async with self.store_factory() as store:
                existing = {r.round_number: r for r in await store.list_rounds(room_id)}
                done = existing.get(round_number)
                if done is not None and done.status == RoundStatus.COMPLETED.value:
                    for turn in await store.list_turns(done.id):
                        transcript.append({"round": round_number, "side": turn.side, **turn.content})
                    continue
                round_ = (
                    await DebateOrchestrator(store, emitter=self.events).start_round(room_id, round_number)
                ).unwrap()

            for side in turn_order(round_type):
                await self.ensure_running(job.id)
                response = await self.responder.lawyer_response(
                    room_id=room_id,
                    round_number=round_number,
                    round_type=round_type.value,
                    side=side,
                    argument=arguments[side],
                    opponent_argument=arguments["B" if side == "A" else "A"],
                    previous_turns=transcript,
                )
                async with self.store_factory() as store:
                    orchestrator = DebateOrchestrator(store, emitter=self.events)
                    (await orchestrator.record_turn(round_.id, side, response)).unwrap()
                transcript.append({"round": round_number, "side": side, **response.model_dump()})

            async with self.store_factory() as store:
                (await DebateOrchestrator(store, emitter=self.events).complete_round(round_.id)).unwrap()
            logger.info("Room %s round %s completed", room_id, round_number)
            await self.report_progress(job.id, f"Round {round_number} completed", TOTAL_ROUNDS, round_number)

        return {"rounds_completed": TOTAL_ROUNDS, "turns": len(transcript)}

    async def run_judge(self, job: Job) -> dict[str, Any]:
        payload: JudgeJobPayload = parse_payload(job.type, job.payload)  # type: ignore[assignment]
        response = await self.responder.judge_response(
            room_id=payload.room_id,
            debate_sessions=payload.debate_sessions,
            decision_type=payload.decision_type,
        )
        await self.ensure_running(job.id)
        decision = JudgeDecision(
            id=str(uuid4()),
            room_id=payload.room_id,
            round_id=None,
            decision_type=payload.decision_type,
            content=response.model_dump(),
            reasoning=response.reasoning,
            score_a=response.score_a,
            score_b=response.score_b,
            created_at=utcnow(),
        )
        async with self.store_factory() as store:
            await store.add(decision)
        return {"decision_id": decision.id, "score_a": response.score_a, "score_b": response.score_b}

    async def run_jury(self, job: Job) -> dict[str, Any]:
        payload: JuryJobPayload = parse_payload(job.type, job.payload)  # type: ignore[assignment]
        ballots: list[JuryBallot] = []
        for juror_number, profile in enumerate(JUROR_PROFILES[: payload.jury_count], start=1):
            await self.ensure_running(job.id)
            response = await self.responder.juror_response(
                room_id=payload.room_id,
                juror_number=juror_number,
                profile=profile,
                debate_sessions=payload.debate_sessions,
            )
            ballots.append(JuryBallot(juror_number=juror_number, **response.model_dump()))
            await self.report_progress(
                job.id, f"Juror {juror_number} voted", payload.jury_count, juror_number
            )

        async with self.store_factory() as store:
            existing = {v.juror_number: v for v in await store.list_jury_votes(payload.room_id)}
            for ballot in ballots:
                vote = existing.get(ballot.juror_number)
                if vote is None:
                    await store.add(
                        JuryVote(
                            id=str(uuid4()),
                            room_id=payload.room_id,
                            juror_number=ballot.juror_number,
                            vote=ballot.vote,
                            reasoning=ballot.reasoning,
                            confidence=ballot.confidence,
                            created_at=utcnow(),
                        )
                    )
                else:
                    vote.vote = ballot.vote
                    vote.reasoning = ballot.reasoning
                    vote.confidence = ballot.confidence
                    await store.save(vote)

        votes_a = sum(1 for b in ballots if b.vote == "A")
        return {"votes_a": votes_a, "votes_b": len(ballots) - votes_a}


async def serve(store_factory: StoreFactory, *, responder: ResponderClient | None = None) -> None:
    """Run an AI worker until shutdown, closing the response layer client on exit."""
    async with responder or ResponderClient() as client:
        await AIWorker(store_factory, responder=client).run_forever()


def main() -> None:
    from ..db import store_scope
    from ..events import install_default_handlers

    logging.basicConfig(level=logging.INFO)
    install_default_handlers()
    asyncio.run(serve(store_scope))


if __name__ == "__main__":
    main()
