from uuid import uuid4

import pytest
from conftest import judge_content, juror_content, lawyer_content, make_room, room_with_arguments, text

from private_judge.errors import ErrorKind
from private_judge.jobs import JobStatus, JobType, utcnow
from private_judge.lifecycle import (
    RoomLifecycle,
    RoomStatus,
    can_transition_to,
    generate_room_code,
    is_terminal,
    progress_order,
)
from private_judge.models import JudgeDecision, JuryVote
from private_judge.rounds import DebateOrchestrator, round_type_for, turn_order
from private_judge.store import MemoryStore

TITLE = "Should cities ban cars downtown?"


async def _complete_rounds(store, room_id: str) -> None:
    orchestrator = DebateOrchestrator(store)
    for number in (1, 2, 3):
        round_ = (await orchestrator.start_round(room_id, number)).unwrap()
        for side in turn_order(round_type_for(number)):
            (await orchestrator.record_turn(round_.id, side, lawyer_content())).unwrap()
        (await orchestrator.complete_round(round_.id)).unwrap()


async def _settle(lifecycle: RoomLifecycle, job_id: str, *, error: str | None = None):
    queue = lifecycle.queue
    (await queue.begin_execution(job_id, "test-worker")).unwrap()
    if error is None:
        (await queue.complete_execution(job_id, {})).unwrap()
    else:
        (await queue.fail_execution(job_id, error)).unwrap()
    return await lifecycle.on_job_finished(job_id)


async def _job(store, room_id: str, job_type: JobType):
    jobs = await store.list_jobs(types=[job_type.value], room_id=room_id)
    assert len(jobs) == 1
    return jobs[0]


def test_status_graph() -> None:
    assert can_transition_to("waiting_participant", "agenda_negotiation")
    assert not can_transition_to("waiting_participant", "ai_processing")
    assert can_transition_to("ai_processing", "cancelled")
    assert not can_transition_to("completed", "cancelled")
    assert is_terminal("cancelled")
    assert progress_order("cancelled") == -1
    assert progress_order("completed") == 5


def test_room_code_alphabet() -> None:
    code = generate_room_code()
    assert len(code) == 6
    assert code.isalnum() and code.upper() == code


@pytest.mark.asyncio
async def test_create_and_join(store, emitter, recorder) -> None:
    lifecycle = RoomLifecycle(store, emitter=emitter)
    assert (await lifecycle.create_room("alice", "Hey")).kind == ErrorKind.VALIDATION

    room = (await lifecycle.create_room("alice", TITLE)).unwrap()
    assert room.status == RoomStatus.WAITING_PARTICIPANT.value

    assert (await lifecycle.join_room(room.code, "alice")).kind == ErrorKind.FORBIDDEN
    assert (await lifecycle.join_room("ZZZZZZ9", "bob")).kind == ErrorKind.NOT_FOUND

    joined = (await lifecycle.join_room(room.code.lower(), "bob")).unwrap()
    assert joined.participant_id == "bob"
    assert joined.status == RoomStatus.AGENDA_NEGOTIATION.value
    assert (await lifecycle.join_room(room.code, "carol")).kind == ErrorKind.INVALID_TRANSITION

    note = await _job(store, room.id, JobType.NOTIFICATION)
    assert note.payload["user_id"] == "alice"
    assert note.payload["type"] == "room_joined"
    assert "room.status_changed" in recorder.types()


@pytest.mark.asyncio
async def test_transition_guards(store) -> None:
    lifecycle = RoomLifecycle(store)
    room = (await lifecycle.create_room("alice", TITLE)).unwrap()
    (await lifecycle.join_room(room.code, "bob")).unwrap()

    assert (await lifecycle.transition(room.id, "arguments_submission", "carol")).kind == ErrorKind.FORBIDDEN
    assert (await lifecycle.transition(room.id, "arguments_submission", "bob")).kind == (
        ErrorKind.INVALID_TRANSITION
    )
    assert (await lifecycle.transition(room.id, "completed", "bob")).kind == ErrorKind.INVALID_TRANSITION
    assert (await lifecycle.transition(room.id, "paused", "bob")).kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_arguments_start_the_debate(store) -> None:
    lifecycle = RoomLifecycle(store)
    room = await room_with_arguments(store, lifecycle)

    assert room.status == RoomStatus.AI_PROCESSING.value
    debate = await _job(store, room.id, JobType.AI_DEBATE)
    assert debate.payload["round"] == 1
    assert debate.payload["argument_a"]["user_id"] == "alice"
    assert debate.payload["argument_b"]["evidence"] == ["survey"]


@pytest.mark.asyncio
async def test_submit_argument_rules(store) -> None:
    lifecycle = RoomLifecycle(store)
    room = await make_room(store, status="arguments_submission")

    assert (await lifecycle.submit_argument(room.id, "carol", "A valid title", text(150))).kind == (
        ErrorKind.FORBIDDEN
    )
    assert (await lifecycle.submit_argument(room.id, "alice", "short", text(150))).kind == ErrorKind.VALIDATION
    assert (await lifecycle.submit_argument(room.id, "alice", "A valid title", text(50))).kind == (
        ErrorKind.VALIDATION
    )
    evidence = [f"e{i}" for i in range(11)]
    assert (await lifecycle.submit_argument(room.id, "alice", "A valid title", text(150), evidence)).kind == (
        ErrorKind.VALIDATION
    )

    (await lifecycle.submit_argument(room.id, "alice", "A valid title", text(150))).unwrap()
    again = await lifecycle.submit_argument(room.id, "alice", "A second title", text(150))
    assert again.kind == ErrorKind.VALIDATION
    assert room.status == RoomStatus.ARGUMENTS_SUBMISSION.value


@pytest.mark.asyncio
async def test_full_pipeline_completes_room(store, emitter, recorder) -> None:
    lifecycle = RoomLifecycle(store, emitter=emitter)
    room = await room_with_arguments(store, lifecycle)
    debate = await _job(store, room.id, JobType.AI_DEBATE)

    await _complete_rounds(store, room.id)
    (await _settle(lifecycle, debate.id)).unwrap()

    judge = await _job(store, room.id, JobType.AI_JUDGE)
    jury = await _job(store, room.id, JobType.AI_JURY)
    assert judge.payload["decision_type"] == "final_verdict"
    assert len(jury.payload["debate_sessions"]) == 3
    assert (await lifecycle.on_rounds_completed(room.id)).unwrap() == []

    decision = judge_content(70, 60)
    await store.add(
        JudgeDecision(
            id=str(uuid4()),
            room_id=room.id,
            round_id=None,
            decision_type="final_verdict",
            content=decision,
            reasoning=decision["reasoning"],
            score_a=70,
            score_b=60,
            created_at=utcnow(),
        )
    )
    (await _settle(lifecycle, judge.id)).unwrap()
    assert room.status == RoomStatus.AI_PROCESSING.value

    for number, (vote, confidence) in enumerate(
        [("A", 8), ("A", 9), ("A", 6), ("A", 7), ("B", 7), ("B", 8), ("B", 9)], start=1
    ):
        ballot = juror_content(vote, confidence)
        await store.add(
            JuryVote(
                id=str(uuid4()),
                room_id=room.id,
                juror_number=number,
                vote=vote,
                reasoning=ballot["reasoning"],
                confidence=confidence,
                created_at=utcnow(),
            )
        )
    (await _settle(lifecycle, jury.id)).unwrap()

    assert room.status == RoomStatus.COMPLETED.value
    assert room.completed_at is not None
    verdict = await store.get_verdict(room.id)
    assert verdict.winner == "A"

    notes = await store.list_jobs(types=[JobType.NOTIFICATION.value], room_id=room.id)
    ready = [n.payload["user_id"] for n in notes if n.payload["type"] == "verdict_ready"]
    assert sorted(ready) == ["alice", "bob"]
    assert "verdict.generated" in recorder.types()

    status = (await lifecycle.room_status(room.id)).unwrap()
    assert status["winner"] == "A"
    assert status["progress_order"] == 5
    assert [r["status"] for r in status["rounds"]] == ["completed"] * 3


@pytest.mark.asyncio
async def test_debate_done_without_rounds_stalls(store, emitter, recorder) -> None:
    lifecycle = RoomLifecycle(store, emitter=emitter)
    room = await room_with_arguments(store, lifecycle)
    debate = await _job(store, room.id, JobType.AI_DEBATE)

    (await _settle(lifecycle, debate.id)).unwrap()

    assert room.stalled
    assert "rounds" in room.stall_reason
    assert room.status == RoomStatus.AI_PROCESSING.value
    assert recorder.types()[-1] == "room.stalled"


@pytest.mark.asyncio
async def test_terminal_job_failure_stalls_room(store) -> None:
    lifecycle = RoomLifecycle(store)
    room = await room_with_arguments(store, lifecycle)
    debate = await _job(store, room.id, JobType.AI_DEBATE)

    (await _settle(lifecycle, debate.id, error="Invalid lawyer response")).unwrap()

    status = (await lifecycle.room_status(room.id)).unwrap()
    assert status["status"] == RoomStatus.AI_PROCESSING.value
    assert status["stalled"] is True
    assert status["last_job_error"] == "Invalid lawyer response"
    assert status["last_job_retry_count"] == 0


@pytest.mark.asyncio
async def test_retryable_failure_does_not_stall(store) -> None:
    lifecycle = RoomLifecycle(store)
    room = await room_with_arguments(store, lifecycle)
    debate = await _job(store, room.id, JobType.AI_DEBATE)

    (await _settle(lifecycle, debate.id, error="network_timeout")).unwrap()

    assert not room.stalled
    assert (await _job(store, room.id, JobType.AI_DEBATE)).status == JobStatus.RETRYING.value


@pytest.mark.asyncio
async def test_failed_judge_is_enqueued_again(store) -> None:
    lifecycle = RoomLifecycle(store)
    room = await room_with_arguments(store, lifecycle)
    await _complete_rounds(store, room.id)
    (await _settle(lifecycle, (await _job(store, room.id, JobType.AI_DEBATE)).id)).unwrap()
    judge = await _job(store, room.id, JobType.AI_JUDGE)
    (await _settle(lifecycle, judge.id, error="Invalid judge decision")).unwrap()

    created = (await lifecycle.on_rounds_completed(room.id)).unwrap()

    assert [j.type for j in created] == [JobType.AI_JUDGE.value]


@pytest.mark.asyncio
async def test_cancel_room_cancels_active_jobs(store) -> None:
    lifecycle = RoomLifecycle(store)
    room = await room_with_arguments(store, lifecycle)
    debate = await _job(store, room.id, JobType.AI_DEBATE)
    (await _settle(lifecycle, debate.id, error="rate_limit_exceeded")).unwrap()

    assert (await lifecycle.cancel_room(room.id, "bob")).kind == ErrorKind.FORBIDDEN
    cancelled = (await lifecycle.transition(room.id, "cancelled", "alice")).unwrap()

    assert cancelled.status == RoomStatus.CANCELLED.value
    assert (await _job(store, room.id, JobType.AI_DEBATE)).status == JobStatus.CANCELLED.value
    assert (await lifecycle.on_job_finished(debate.id)).unwrap() is room
    assert (await lifecycle.cancel_room(room.id, "alice")).kind == ErrorKind.INVALID_TRANSITION


@pytest.mark.asyncio
async def test_cancelled_debate_does_not_enqueue_judgement(store) -> None:
    lifecycle = RoomLifecycle(store)
    room = await room_with_arguments(store, lifecycle)
    debate = await _job(store, room.id, JobType.AI_DEBATE)
    (await lifecycle.queue.cancel(debate.id, "alice")).unwrap()
    await _complete_rounds(store, room.id)

    assert (await lifecycle.on_rounds_completed(room.id)).unwrap() == []


@pytest.mark.asyncio
async def test_room_less_jobs_are_ignored(store) -> None:
    lifecycle = RoomLifecycle(store)
    job = (
        await lifecycle.queue.create_job(
            JobType.NOTIFICATION, None, {"user_id": "alice", "type": "room_joined", "message": "hi"}
        )
    ).unwrap()
    assert (await lifecycle.on_job_finished(job.id)).value is None
    assert (await lifecycle.on_job_finished("missing")).kind == ErrorKind.NOT_FOUND


async def _seed_verdict_inputs(store, room_id: str) -> None:
    decision = judge_content(70, 60)
    await store.add(
        JudgeDecision(
            id=str(uuid4()),
            room_id=room_id,
            round_id=None,
            decision_type="final_verdict",
            content=decision,
            reasoning=decision["reasoning"],
            score_a=70,
            score_b=60,
            created_at=utcnow(),
        )
    )
    for number, vote in enumerate("AAABB", start=1):
        await store.add(
            JuryVote(
                id=str(uuid4()),
                room_id=room_id,
                juror_number=number,
                vote=vote,
                reasoning=juror_content(vote, 7)["reasoning"],
                confidence=7,
                created_at=utcnow(),
            )
        )


class LockRecordingStore(MemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.locked: list[str] = []

    async def lock_room(self, room_id: str):
        self.locked.append(room_id)
        return await super().lock_room(room_id)


@pytest.mark.asyncio
async def test_judge_and_jury_settled_before_either_hook(store, emitter, recorder) -> None:
    lifecycle = RoomLifecycle(store, emitter=emitter)
    room = await room_with_arguments(store, lifecycle)
    await _complete_rounds(store, room.id)
    (await _settle(lifecycle, (await _job(store, room.id, JobType.AI_DEBATE)).id)).unwrap()
    judge = await _job(store, room.id, JobType.AI_JUDGE)
    jury = await _job(store, room.id, JobType.AI_JURY)
    await _seed_verdict_inputs(store, room.id)

    queue = lifecycle.queue
    for job in (judge, jury):
        (await queue.begin_execution(job.id, f"worker-{job.type}")).unwrap()
    (await queue.complete_execution(judge.id, {})).unwrap()
    (await queue.complete_execution(jury.id, {})).unwrap()

    (await lifecycle.on_job_finished(judge.id)).unwrap()
    assert room.status == RoomStatus.COMPLETED.value
    (await lifecycle.on_job_finished(jury.id)).unwrap()

    assert room.status == RoomStatus.COMPLETED.value
    assert not room.stalled
    assert (await store.get_verdict(room.id)).winner == "A"
    assert recorder.types().count("verdict.generated") == 1
    notes = await store.list_jobs(types=[JobType.NOTIFICATION.value], room_id=room.id)
    assert sorted(n.payload["user_id"] for n in notes if n.payload["type"] == "verdict_ready") == [
        "alice",
        "bob",
    ]


@pytest.mark.asyncio
async def test_room_hooks_take_the_room_lock(emitter) -> None:
    store = LockRecordingStore()
    lifecycle = RoomLifecycle(store, emitter=emitter)
    room = await room_with_arguments(store, lifecycle)
    # Both argument submissions lock the room before reading the other side's argument.
    assert store.locked == [room.id, room.id]

    debate = await _job(store, room.id, JobType.AI_DEBATE)
    store.locked.clear()
    (await _settle(lifecycle, debate.id, error="Invalid lawyer response")).unwrap()
    assert store.locked == [room.id]
    assert room.stalled

    store.locked.clear()
    (await lifecycle.cancel_room(room.id, "alice")).unwrap()
    assert store.locked == [room.id]
