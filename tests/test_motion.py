from datetime import timedelta

import pytest
from conftest import make_room, text

from private_judge.errors import ErrorKind, Forbidden, InvalidTransition, ValidationError
from private_judge.jobs import utcnow
from private_judge.motion import (
    MotionNegotiation,
    MotionStatus,
    apply_response,
    is_stale,
    motion_stats,
    negotiation_progress,
    new_motion,
)

TITLE = text(12, "motion")
DESCRIPTION = text(60, "description")
REASON = "the wording is too broad"


def _motion(**kwargs):
    return new_motion("room-1", "x", TITLE, DESCRIPTION, **kwargs)


def test_new_motion_records_proposal() -> None:
    motion = _motion()
    assert motion.status == MotionStatus.PROPOSED.value
    assert [e["action"] for e in motion.negotiation_history] == ["proposed"]
    assert motion.agreed_at is None


@pytest.mark.parametrize(
    ("title", "description"),
    [("short", DESCRIPTION), (TITLE, "too short"), (text(301), DESCRIPTION)],
)
def test_new_motion_validates_lengths(title: str, description: str) -> None:
    with pytest.raises(ValidationError):
        new_motion("room-1", "x", title, description)


def test_modify_then_original_proposer_accepts() -> None:
    motion = _motion()

    apply_response(motion, "y", "modify", modifications={"title": text(15, "narrower")}, reason=REASON)
    assert motion.status == MotionStatus.UNDER_NEGOTIATION.value
    assert len(motion.negotiation_history) == 2
    assert motion.title == text(15, "narrower")
    assert motion.proposer_id == "x"
    assert motion.negotiation_history[-1]["changes"] == {"title": text(15, "narrower")}

    with pytest.raises(Forbidden):
        apply_response(motion, "y", "accept")

    apply_response(motion, "x", "accept")
    assert motion.status == MotionStatus.AGREED.value
    assert motion.agreed_at is not None
    assert len(motion.negotiation_history) == 3


def test_proposer_cannot_respond_to_own_proposal() -> None:
    with pytest.raises(Forbidden):
        apply_response(_motion(), "x", "accept")


def test_final_motion_rejects_further_responses() -> None:
    motion = _motion()
    apply_response(motion, "y", "reject", reason=REASON)
    assert motion.status == MotionStatus.REJECTED.value
    assert motion.agreed_at is None
    with pytest.raises(Forbidden):
        apply_response(motion, "x", "modify", modifications={"title": TITLE}, reason=REASON)


@pytest.mark.parametrize("action", ["modify", "reject"])
def test_modify_and_reject_need_a_reason(action: str) -> None:
    with pytest.raises(ValidationError):
        apply_response(_motion(), "y", action, modifications={"title": TITLE}, reason="no")


def test_modify_needs_a_change() -> None:
    with pytest.raises(ValidationError):
        apply_response(_motion(), "y", "modify", modifications={}, reason=REASON)


def test_unknown_action() -> None:
    with pytest.raises(ValidationError):
        apply_response(_motion(), "y", "withdraw")


def test_modification_limit() -> None:
    motion = _motion()
    actors = ["y", "x"]
    for i in range(2):
        apply_response(
            motion, actors[i % 2], "modify", modifications={"title": TITLE}, reason=REASON, max_modifications=2
        )
    with pytest.raises(InvalidTransition):
        apply_response(motion, "y", "modify", modifications={"title": TITLE}, reason=REASON, max_modifications=2)
    assert len(motion.negotiation_history) == 3


def test_staleness_uses_last_activity() -> None:
    then = utcnow() - timedelta(days=4)
    motion = _motion(now=then)
    assert is_stale(motion, stale_days=3)

    apply_response(motion, "y", "modify", modifications={"title": TITLE}, reason=REASON)
    assert not is_stale(motion, stale_days=3)

    apply_response(motion, "x", "accept", now=then)
    assert not is_stale(motion, stale_days=3)


def test_negotiation_progress_and_stats() -> None:
    motion = _motion()
    apply_response(motion, "y", "modify", modifications={"description": text(80)}, reason=REASON)

    progress = negotiation_progress(motion)
    assert progress.total_actions == 2
    assert progress.modifications == 1
    assert progress.modifications_remaining == 4
    assert progress.last_actor == "y"

    agreed = _motion()
    apply_response(agreed, "y", "accept")
    rejected = _motion()
    apply_response(rejected, "y", "reject", reason=REASON)

    stats = motion_stats([motion, agreed, rejected])
    assert stats["total"] == 3
    assert stats["agreement_rate"] == 50.0
    assert stats["by_status"]["under_negotiation"] == 1


@pytest.mark.asyncio
async def test_service_negotiates_within_room(store, emitter, recorder) -> None:
    room = await make_room(store, creator_id="x", participant_id="y", status="agenda_negotiation")
    service = MotionNegotiation(store, emitter=emitter)

    assert (await service.propose(room.id, "z", TITLE, DESCRIPTION)).kind == ErrorKind.FORBIDDEN

    motion = (await service.propose(room.id, "x", TITLE, DESCRIPTION)).unwrap()
    assert (await service.propose(room.id, "y", TITLE, DESCRIPTION)).kind == ErrorKind.VALIDATION

    modified = await service.respond(
        motion.id, "y", "modify", modifications={"title": text(15, "narrower")}, reason=REASON
    )
    assert modified.ok
    assert (await service.respond(motion.id, "y", "accept")).kind == ErrorKind.FORBIDDEN

    agreed = (await service.respond(motion.id, "x", "accept")).unwrap()
    assert agreed.status == MotionStatus.AGREED.value
    assert recorder.types() == ["motion.proposed", "motion.modified", "motion.accepted"]
    assert (await service.progress(motion.id)).value.total_actions == 3


@pytest.mark.asyncio
async def test_propose_outside_agenda_negotiation(store) -> None:
    room = await make_room(store, creator_id="x", participant_id="y", status="arguments_submission")
    result = await MotionNegotiation(store).propose(room.id, "x", TITLE, DESCRIPTION)
    assert result.kind == ErrorKind.INVALID_TRANSITION
