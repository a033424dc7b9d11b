"""One viewing session: generation stream plus the player's command surface."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Union

from .chat import ConversationBusy, ConversationSession, ConversationTurn
from .config import DEFAULT_VOICE, PCM_SAMPLE_RATE
from .pipeline import GenerationProgress, Pipeline, PipelineFailed
from .player import PlaybackEngine, Scheduler
from .scriptgen import Slide

log = logging.getLogger(__name__)

GENERIC_FAILURE = "Something went wrong while generating the slideshow. Please try again."


@dataclass(frozen=True)
class ProgressUpdate:
    progress: GenerationProgress


@dataclass(frozen=True)
class LessonReady:
    title: str
    slides: tuple[Slide, ...]


@dataclass(frozen=True)
class LessonFailed:
    message: str


LessonEvent = Union[ProgressUpdate, LessonReady, LessonFailed]


class LessonSession:
    """Glue between the pipeline, the player and the Q&A side channel.

    The host drives it with :meth:`start` and the navigation commands and
    re-renders whenever *on_change* fires.
    """

    def __init__(
        self,
        gateway,
        output,
        voice_name: str = DEFAULT_VOICE,
        progress_cb: Callable[[str], None] | None = None,
        on_change: Callable[[], None] | None = None,
        scheduler: Scheduler | None = None,
        sample_rate: int = PCM_SAMPLE_RATE,
    ) -> None:
        self.gateway = gateway
        self.voice_name = voice_name
        self._progress_cb = progress_cb or (lambda msg: None)
        self._queue: asyncio.Queue | None = None
        self.pipeline = Pipeline(gateway, progress_cb=self._on_step)
        self.engine = PlaybackEngine(
            output,
            sample_rate=sample_rate,
            scheduler=scheduler,
            on_change=on_change,
        )
        self.topic = ""
        self.title = ""
        self.conversation: ConversationSession | None = None
        self.chat_open = False

    def _on_step(self, msg: str) -> None:
        self._progress_cb(msg)
        if self._queue is not None:
            self._queue.put_nowait(ProgressUpdate(self.pipeline.progress))

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def start(self, topic: str, voice_name: str | None = None) -> AsyncIterator[LessonEvent]:
        """Generate a lesson, yielding progress and one terminal event.

        On :class:`LessonReady` the lesson is already loaded into the player.
        """
        self.reset()
        self.topic = topic.strip()
        if voice_name:
            self.voice_name = voice_name

        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue

        async def _run() -> None:
            try:
                slides = await self.pipeline.run_main(self.topic, self.voice_name)
            except PipelineFailed as e:
                queue.put_nowait(LessonFailed(str(e) or GENERIC_FAILURE))
            except Exception as e:
                log.exception("Pipeline crashed")
                queue.put_nowait(LessonFailed(str(e) or GENERIC_FAILURE))
            else:
                self._install(slides)
                queue.put_nowait(LessonReady(self.title, tuple(slides)))

        task = asyncio.create_task(_run())
        try:
            while True:
                event = await queue.get()
                yield event
                if not isinstance(event, ProgressUpdate):
                    break
        finally:
            self._queue = None
            if not task.done():
                task.cancel()

    def _install(self, slides: list[Slide]) -> None:
        script = self.pipeline.script
        self.title = script.title if script else self.topic
        self.conversation = ConversationSession(
            self.gateway,
            self.pipeline,
            topic=self.topic,
            voice_name=self.voice_name,
            context_provider=lambda: self.engine.current_slide,
        )
        self.engine.load(slides)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def next(self) -> bool:
        return self.engine.next()

    def previous(self) -> bool:
        return self.engine.previous()

    def jump(self, index: int) -> None:
        self.engine.jump(index)

    def toggle_play_pause(self) -> None:
        self.engine.toggle_play_pause()

    def close_branch(self) -> bool:
        return self.engine.close_branch()

    # ------------------------------------------------------------------
    # Ask & Visualize
    # ------------------------------------------------------------------

    def _require_conversation(self) -> ConversationSession:
        if self.conversation is None:
            raise RuntimeError("No lesson loaded")
        return self.conversation

    def open_chat(self) -> ConversationSession:
        conversation = self._require_conversation()
        self.engine.pause()
        self.chat_open = True
        return conversation

    def close_chat(self) -> None:
        self.chat_open = False

    async def send_question(self, text: str) -> ConversationTurn:
        """Ask about the visible slide. Narration is paused while chatting."""
        conversation = self._require_conversation()
        if conversation.answer_in_flight:
            raise ConversationBusy("Still answering the previous question")
        question = text.strip()
        if not question:
            raise ValueError("Question is empty")
        self.engine.pause()
        return await conversation.ask(question)

    async def visualize(self, turn_index: int) -> bool:
        """Turn an answer into a visual explanation and start playing it."""
        conversation = self._require_conversation()
        slides = await conversation.escalate_to_branch(turn_index)
        if not slides:
            return False
        if conversation is not self.conversation:
            log.info("Lesson was reset while visualizing; dropping explanation")
            return False
        self.engine.open_branch(slides)
        self.chat_open = False
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Back to the topic form: no lesson, no transcript, no audio."""
        self.engine.reset()
        self.conversation = None
        self.topic = ""
        self.title = ""
        self.chat_open = False

    def close(self) -> None:
        self.engine.close()
