"""Tests for core.orchestrator - fake generation backend, verify stage flow."""

import threading

import pytest

from core.orchestrator import EmptyRequestError, Orchestrator, PipelineBusyError, RunRejected
from core.prompts import build_prompt
from core.state import Artifact, PipelineState, StageStatus


class FakeGenerator:
    """Records every call and returns a fresh artifact for each one.

    fail_prompts: instructions that raise instead of returning an image.
    """

    def __init__(self, fail_prompts=(), fail_all=False):
        self.calls = []
        self.fail_prompts = set(fail_prompts)
        self.fail_all = fail_all
        self._lock = threading.Lock()

    def generate(self, instruction, reference_image=None):
        with self._lock:
            self.calls.append((instruction, reference_image))
            n = len(self.calls)
        if self.fail_all or instruction in self.fail_prompts:
            raise RuntimeError("quota exceeded")
        return Artifact(data=f"image-{n}".encode())


DEPENDENT_PROMPTS = {rank: build_prompt("", rank, True, False) for rank in (1, 2, 3)}


def _dependent_calls(gen):
    return [c for c in gen.calls if c[0] in DEPENDENT_PROMPTS.values()]


def test_galloping_horse_end_to_end():
    state = PipelineState()
    gen = FakeGenerator()
    stages = Orchestrator(state, gen).run("a galloping horse")

    anchor_prompt, anchor_ref = gen.calls[0]
    assert anchor_ref is None
    assert anchor_prompt == build_prompt("a galloping horse", 4, False, False)

    anchor_artifact = state.get(4).artifact
    dependent = gen.calls[1:]
    assert len(dependent) == 3
    assert all(ref is anchor_artifact for _, ref in dependent)
    assert {p for p, _ in dependent} == set(DEPENDENT_PROMPTS.values())

    assert all(s.status == StageStatus.SUCCESS for s in stages)
    assert len({s.artifact for s in stages}) == 4


def test_every_stage_terminal_after_run():
    for gen in (FakeGenerator(), FakeGenerator(fail_all=True),
                FakeGenerator(fail_prompts=[DEPENDENT_PROMPTS[1], DEPENDENT_PROMPTS[3]])):
        stages = Orchestrator(PipelineState(), gen).run("a cat")
        assert all(s.status in (StageStatus.SUCCESS, StageStatus.ERROR) for s in stages)


def test_anchor_failure_fails_everything_and_skips_dependents():
    state = PipelineState()
    gen = FakeGenerator(fail_all=True)
    stages = Orchestrator(state, gen).run("a horse")

    assert len(gen.calls) == 1
    assert _dependent_calls(gen) == []
    assert all(s.status == StageStatus.ERROR for s in stages)
    assert all(s.artifact is None for s in stages)
    assert "quota exceeded" in stages[3].error


def test_dependent_failure_is_local():
    state = PipelineState()
    gen = FakeGenerator(fail_prompts=[DEPENDENT_PROMPTS[2]])
    stages = Orchestrator(state, gen).run("a horse")

    by_rank = {s.rank: s for s in stages}
    assert by_rank[4].status == StageStatus.SUCCESS
    assert by_rank[2].status == StageStatus.ERROR
    assert by_rank[2].artifact is None
    assert by_rank[1].status == StageStatus.SUCCESS
    assert by_rank[3].status == StageStatus.SUCCESS
    assert by_rank[1].artifact != by_rank[3].artifact
    assert len(gen.calls) == 4  # no retry


def test_user_image_seeds_anchor():
    state = PipelineState()
    gen = FakeGenerator()
    photo = Artifact(data=b"photo", mime_type="image/jpeg")
    Orchestrator(state, gen).run("", photo)

    anchor_prompt, anchor_ref = gen.calls[0]
    assert anchor_ref is photo
    assert anchor_prompt == build_prompt("", 4, True, True)
    # Dependents use the generated anchor, not the user's photo.
    assert all(ref is state.get(4).artifact for _, ref in gen.calls[1:])


def test_empty_request_is_rejected_without_side_effects():
    state = PipelineState()
    gen = FakeGenerator()
    seen = []
    state.subscribe(seen.append)

    with pytest.raises(EmptyRequestError):
        Orchestrator(state, gen).run("", None)
    with pytest.raises(RunRejected):
        Orchestrator(state, gen).run("   ")

    assert gen.calls == []
    assert seen == []
    assert all(s.status == StageStatus.IDLE for s in state.snapshot())


class BlockingGenerator(FakeGenerator):
    """Holds the first call open until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def generate(self, instruction, reference_image=None):
        self.entered.set()
        assert self.release.wait(timeout=5)
        return super().generate(instruction, reference_image)


def test_overlapping_run_is_rejected():
    state = PipelineState()
    gen = BlockingGenerator()
    orch = Orchestrator(state, gen)

    worker = threading.Thread(target=orch.run, args=("a horse",))
    worker.start()
    assert gen.entered.wait(timeout=5)
    assert orch.is_running

    before = state.snapshot()
    with pytest.raises(PipelineBusyError):
        orch.run("an owl")
    assert state.snapshot() == before
    assert all(s.status == StageStatus.LOADING for s in before)

    gen.release.set()
    worker.join(timeout=5)
    assert not worker.is_alive()
    assert len(gen.calls) == 4
    assert not orch.is_running


def test_lock_released_after_anchor_failure():
    state = PipelineState()
    orch = Orchestrator(state, FakeGenerator(fail_all=True))
    orch.run("a horse")
    assert not orch.is_running

    orch.generator = FakeGenerator()
    stages = orch.run("a horse")
    assert all(s.status == StageStatus.SUCCESS for s in stages)


def test_second_run_restarts_all_stages():
    state = PipelineState()
    orch = Orchestrator(state, FakeGenerator(fail_prompts=[DEPENDENT_PROMPTS[1]]))
    orch.run("a horse")
    assert state.get(1).status == StageStatus.ERROR

    seen = []
    state.subscribe(seen.append)
    orch.generator = FakeGenerator()
    orch.run("a horse")

    assert [s.status for s in seen[:4]] == [StageStatus.LOADING] * 4
    assert state.get(1).status == StageStatus.SUCCESS
    assert state.get(1).error is None


def test_dependents_run_concurrently():
    """All three dependent calls must be in flight at the same time."""
    barrier = threading.Barrier(3, timeout=5)

    class BarrierGenerator(FakeGenerator):
        def generate(self, instruction, reference_image=None):
            if reference_image is not None:
                barrier.wait()
            return super().generate(instruction, reference_image)

    stages = Orchestrator(PipelineState(), BarrierGenerator()).run("a horse")
    assert all(s.status == StageStatus.SUCCESS for s in stages)


def _raise_on_settle(stage):
    if stage.status in (StageStatus.SUCCESS, StageStatus.ERROR):
        raise BrokenPipeError("stdout closed")


def test_raising_observer_does_not_break_anchor_cascade():
    state = PipelineState()
    state.subscribe(_raise_on_settle)
    stages = Orchestrator(state, FakeGenerator(fail_all=True)).run("a horse")
    assert [s.status for s in stages] == [StageStatus.ERROR] * 4
    assert all("quota exceeded" in s.error for s in stages)


def test_raising_observer_does_not_break_dependents():
    state = PipelineState()
    state.subscribe(_raise_on_settle)
    gen = FakeGenerator(fail_prompts=[DEPENDENT_PROMPTS[2]])
    stages = Orchestrator(state, gen).run("a horse")
    assert [s.status for s in stages] == [
        StageStatus.SUCCESS, StageStatus.ERROR, StageStatus.SUCCESS, StageStatus.SUCCESS,
    ]
