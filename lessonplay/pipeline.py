"""Orchestrates lesson generation: script first, then media scene by scene."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Callable

from .gateway import GenerationFailed
from .scriptgen import Scene, Script, Slide

log = logging.getLogger(__name__)


class PipelineFailed(Exception):
    """Script drafting failed; no slides were produced."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(str(cause))
        self.cause = cause


@dataclass(frozen=True)
class GenerationProgress:
    current_step: str = ""
    completed_count: int = 0
    total_count: int = 0

    @property
    def percentage(self) -> int:
        if self.total_count <= 0:
            return 0
        return round(self.completed_count / self.total_count * 100)


ProgressCallback = Callable[[GenerationProgress], None]


class Pipeline:
    """Lesson generation pipeline.

    Scenes are handled strictly one after another to stay under the
    provider's rate limits. Inside a scene the image and the narration are
    requested together, so at most two requests are ever outstanding.
    """

    def __init__(
        self,
        gateway,
        progress_cb: Callable[[str], None] | None = None,
    ):
        self.gateway = gateway
        self.progress_cb = progress_cb or (lambda msg: None)
        self._progress = GenerationProgress()
        self._script: Script | None = None

    @property
    def progress(self) -> GenerationProgress:
        return self._progress

    @property
    def script(self) -> Script | None:
        return self._script

    def _set_progress(self, **changes) -> GenerationProgress:
        self._progress = replace(self._progress, **changes)
        if "current_step" in changes:
            self.progress_cb(self._progress.current_step)
        return self._progress

    async def _build_slide(self, scene: Scene, voice_name: str) -> Slide:
        image_data, audio_data = await asyncio.gather(
            self.gateway.synthesize_image(scene.visual_description),
            self.gateway.synthesize_speech(scene.narration, voice_name),
        )
        if image_data is None:
            log.warning("Scene %d has no image", scene.scene_number)
        if audio_data is None:
            log.warning("Scene %d has no narration audio", scene.scene_number)
        return Slide.from_scene(scene, image_data, audio_data)

    async def run_main(
        self,
        topic: str,
        voice_name: str,
        on_progress: ProgressCallback | None = None,
    ) -> list[Slide]:
        """Generate the full lesson for *topic*.

        ``on_progress`` fires once per finished scene, in scene order, with
        ``completed_count`` running 1..N.

        Raises:
            PipelineFailed: If the script could not be drafted.
        """
        self._script = None
        self._set_progress(current_step="Drafting script...", completed_count=0, total_count=0)

        try:
            script = await self.gateway.draft_script(topic)
        except GenerationFailed as e:
            log.error("Pipeline failed: %s", e)
            self._set_progress(current_step=f"Failed: {e}")
            raise PipelineFailed(e) from e

        self._script = script
        total = len(script.scenes)
        self._set_progress(
            current_step=f"Script ready! Generating assets for {total} scenes...",
            total_count=total,
        )

        slides: list[Slide] = []
        for scene in script.scenes:
            self._set_progress(
                current_step=f"Creating Scene {scene.scene_number}: Visuals & Narration..."
            )
            slides.append(await self._build_slide(scene, voice_name))

            snapshot = self._set_progress(
                current_step=f"Scene {scene.scene_number} ready",
                completed_count=self._progress.completed_count + 1,
            )
            if on_progress is not None:
                on_progress(snapshot)

        log.info("Generated %d slides for %r", len(slides), script.title)
        return slides

    async def run_branch(self, context_text: str, question: str, voice_name: str) -> list[Slide]:
        """Generate a short visual explanation answering *question*.

        Raises:
            PipelineFailed: If the branch script could not be drafted.
        """
        try:
            script = await self.gateway.draft_branch_script(context_text, question)
        except GenerationFailed as e:
            log.error("Visualization failed: %s", e)
            raise PipelineFailed(e) from e

        slides: list[Slide] = []
        for scene in script.scenes:
            slides.append(await self._build_slide(scene, voice_name))
        return slides
