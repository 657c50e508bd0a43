"""Stage orchestrator: anchor first, then the three earlier stages in parallel."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait

from config.defaults import DEFAULTS
from core.prompts import build_prompt
from core.state import ANCHOR_RANK, DEPENDENT_RANKS, StageStatus

log = logging.getLogger(__name__)


class RunRejected(Exception):
    """run() was called in a way the engine refuses to start."""


class PipelineBusyError(RunRejected, RuntimeError):
    pass


class EmptyRequestError(RunRejected, ValueError):
    pass


class Orchestrator:
    """Runs one sculpture progression against a generation backend.

    The final work (stage 4) is the anchor: it is generated first, and its
    image becomes the reference for stages 1-3. If the anchor fails, every
    stage fails. A failing earlier stage only affects itself.

    The orchestrator never owns the stage records: it writes through the
    PipelineState it is given, so callers can watch progress live.
    """

    def __init__(self, state, generator, max_workers=None):
        self.state = state
        self.generator = generator
        self.max_workers = max_workers or DEFAULTS["max_workers"]
        self._running = threading.Lock()

    @property
    def is_running(self):
        return self._running.locked()

    def run(self, user_text, reference_image=None):
        """Run all four stages and return the final snapshot.

        Raises EmptyRequestError if there is neither text nor an image, and
        PipelineBusyError if another run has not settled yet. Generation
        failures are recorded on the stages, never raised.
        """
        user_text = (user_text or "").strip()
        if not user_text and reference_image is None:
            raise EmptyRequestError("A prompt or a reference image is required")

        if not self._running.acquire(blocking=False):
            raise PipelineBusyError("A generation run is already in progress")

        try:
            self.state.reset()
            anchor = self._run_anchor(user_text, reference_image)
            if anchor is not None:
                self._run_dependents(user_text, anchor)
        finally:
            self._running.release()

        return self.state.snapshot()

    def _generate(self, user_text, rank, reference_image, from_user_image):
        prompt = build_prompt(
            user_text, rank,
            has_reference=reference_image is not None,
            is_initial_from_user_image=from_user_image,
        )
        log.info("Generating stage", extra={"rank": rank})
        return self.generator.generate(prompt, reference_image)

    def _run_anchor(self, user_text, reference_image):
        """Generate stage 4. Returns its artifact, or None after failing all stages."""
        try:
            artifact = self._generate(
                user_text, ANCHOR_RANK, reference_image,
                from_user_image=reference_image is not None,
            )
        except Exception as e:
            log.error("Anchor generation failed: %s", e, extra={"rank": ANCHOR_RANK})
            message = f"Final work could not be generated: {e}"
            for stage in self.state.snapshot():
                self.state.update(stage.rank, StageStatus.ERROR, error=message)
            return None

        self.state.update(ANCHOR_RANK, StageStatus.SUCCESS, artifact=artifact)
        return artifact

    def _run_dependent(self, user_text, rank, anchor):
        try:
            artifact = self._generate(user_text, rank, anchor, from_user_image=False)
        except Exception as e:
            log.error("Stage generation failed: %s", e, extra={"rank": rank})
            self.state.update(rank, StageStatus.ERROR, error=str(e) or type(e).__name__)
            return
        self.state.update(rank, StageStatus.SUCCESS, artifact=artifact)

    def _run_dependents(self, user_text, anchor):
        with ThreadPoolExecutor(max_workers=self.max_workers,
                                thread_name_prefix="stage") as pool:
            futures = [
                pool.submit(self._run_dependent, user_text, rank, anchor)
                for rank in DEPENDENT_RANKS
            ]
            wait(futures)
        # Branches record their own outcome; anything left here is a bug.
        for future in futures:
            future.result()
