"""Ask & Visualize: per-lesson Q&A transcript and branch escalation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .pipeline import Pipeline, PipelineFailed
from .scriptgen import Slide

log = logging.getLogger(__name__)

VISUALIZE_OPENING = "Opening visual explanation..."
VISUALIZE_FAILED = "Sorry, I couldn't generate the visual explanation right now."


class ConversationBusy(Exception):
    """A request of the same kind is still in flight."""


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    text: str
    branch_eligible: bool = False


class ConversationSession:
    """Question/answer history for one lesson.

    History belongs to the session, not to a slide: navigating does not
    clear it. The slide used as context is whatever *context_provider*
    returns at the time of each call.

    ``ask`` and ``escalate_to_branch`` are each single-flight, independently
    of one another: a second call of the same kind while the first is still
    awaiting the provider raises :class:`ConversationBusy`.
    """

    def __init__(
        self,
        gateway,
        pipeline: Pipeline,
        topic: str,
        voice_name: str,
        context_provider: Callable[[], Slide | None],
    ) -> None:
        self.gateway = gateway
        self.pipeline = pipeline
        self.topic = topic
        self.voice_name = voice_name
        self._context_provider = context_provider
        self._turns: list[ConversationTurn] = []
        self._asking = False
        self._visualizing = False

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    @property
    def answer_in_flight(self) -> bool:
        return self._asking

    @property
    def visualization_in_flight(self) -> bool:
        return self._visualizing

    def _context_text(self) -> str:
        slide = self._context_provider()
        return slide.narration if slide is not None else ""

    async def ask(self, question: str) -> ConversationTurn:
        """Append the question, fetch an answer and append it.

        Returns the assistant turn.
        """
        if self._asking:
            raise ConversationBusy("Still answering the previous question")
        question = question.strip()
        if not question:
            raise ValueError("Question is empty")

        self._asking = True
        try:
            self._turns.append(ConversationTurn(Role.USER, question))
            answer = await self.gateway.answer_question(self.topic, self._context_text(), question)
            # Every answer is offered for visualization, refusals included.
            turn = ConversationTurn(Role.ASSISTANT, answer, branch_eligible=True)
            self._turns.append(turn)
            return turn
        finally:
            self._asking = False

    def question_for(self, turn_index: int) -> str:
        """The user question that produced the assistant turn at *turn_index*."""
        if not 0 < turn_index < len(self._turns):
            raise ValueError(f"No answer at turn {turn_index}")
        turn = self._turns[turn_index]
        if turn.role is not Role.ASSISTANT or not turn.branch_eligible:
            raise ValueError(f"Turn {turn_index} cannot be visualized")
        prior = self._turns[turn_index - 1]
        if prior.role is not Role.USER:
            raise ValueError(f"Turn {turn_index} has no preceding question")
        return prior.text

    async def escalate_to_branch(self, turn_index: int) -> list[Slide] | None:
        """Generate a visual explanation for the answer at *turn_index*.

        Returns the branch slides, or ``None`` when generation failed (an
        apology is appended to the transcript instead).
        """
        if self._visualizing:
            raise ConversationBusy("A visual explanation is already being generated")
        question = self.question_for(turn_index)

        self._visualizing = True
        try:
            slides = await self.pipeline.run_branch(self._context_text(), question, self.voice_name)
        except PipelineFailed as e:
            log.warning("Visualization failed: %s", e)
            self._turns.append(ConversationTurn(Role.ASSISTANT, VISUALIZE_FAILED))
            return None
        finally:
            self._visualizing = False

        self._turns.append(ConversationTurn(Role.ASSISTANT, VISUALIZE_OPENING))
        return slides

    def clear(self) -> None:
        self._turns.clear()
