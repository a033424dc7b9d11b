"""Textual TUI application for lessonplay."""
from __future__ import annotations

import asyncio

from rich.markup import escape
from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import (
    Button,
    Footer,
    Header,
    Input,
    Label,
    ProgressBar,
    RichLog,
    Select,
    Static,
)

from .audio_output import SoundDeviceOutput
from .chat import ConversationBusy, Role
from .config import VOICES, Config
from .gateway import GeminiGateway
from .imagegen import PLACEHOLDER_TEXT, describe_image
from .session import LessonFailed, LessonReady, LessonSession, ProgressUpdate

# Panels, only one visible at a time
_PANELS = ("#input-panel", "#progress-panel", "#player-panel", "#error-panel")


def _rich_format(msg: str) -> str:
    """Colour key pipeline messages."""
    msg = escape(msg)
    if msg.startswith("Failed"):
        return f"[bold red]{msg}[/bold red]"
    if msg.startswith("Script ready") or msg.endswith("ready"):
        return f"[green]{msg}[/green]"
    if msg.startswith("Creating Scene"):
        return f"[dim cyan]{msg}[/dim cyan]"
    return f"[bold cyan]{msg}[/bold cyan]"


class LessonPlayApp(App):
    """Narrated slideshow lessons in the terminal."""

    TITLE = "LessonPlay — AI Slideshow Lessons"
    CSS = """
    Screen {
        layout: vertical;
    }

    #input-panel, #progress-panel, #error-panel {
        height: auto;
        padding: 1 2;
        background: $surface;
    }

    #topic-input {
        width: 1fr;
        margin-top: 1;
    }

    #voice-row {
        height: auto;
        padding: 1 0 0 0;
        align: left middle;
    }

    #voice-label {
        width: auto;
        padding: 0 1 0 0;
    }

    #voice-select {
        width: 24;
    }

    #progress-bar {
        margin: 1 0;
    }

    #progress-log {
        height: 12;
    }

    /* Player */
    #player-panel {
        height: 1fr;
        padding: 0 2;
    }

    #slide-title {
        text-style: bold;
        padding: 1 0 0 0;
    }

    #scene-label {
        color: $accent;
    }

    #slide-image {
        color: $text-muted;
        padding: 1 0;
    }

    #slide-image.missing {
        color: $warning;
    }

    #slide-narration {
        height: auto;
        padding: 0 0 1 0;
    }

    #transport-bar, #chat-bar, #error-bar {
        height: 3;
        align: left middle;
    }

    #transport-bar Button, #chat-bar Button, #error-bar Button {
        margin-right: 1;
    }

    #chat-panel {
        height: 1fr;
        border-top: solid $accent;
    }

    #chat-log {
        height: 1fr;
    }

    #chat-input {
        width: 1fr;
    }

    #error-message {
        color: $error;
        padding: 0 0 1 0;
    }

    /* Status bar */
    #status-bar {
        dock: bottom;
        height: 3;
        padding: 1 2;
        background: $accent;
        color: $text;
    }

    .key-warning {
        color: $warning;
        padding: 0 0 1 0;
        height: auto;
    }
    """

    BINDINGS = [
        Binding("ctrl+g", "generate", "Generate", show=True),
        Binding("space", "toggle_play", "Play/Pause", show=True),
        Binding("left", "previous", "Prev", show=True),
        Binding("right", "next", "Next", show=True),
        Binding("ctrl+a", "open_chat", "Ask", show=True),
        Binding("escape", "back", "Back", show=True),
        Binding("ctrl+n", "new_lesson", "New", show=True),
        Binding("ctrl+q", "quit", "Quit", show=True),
    ] + [
        # 1-9 jump straight to a slide on the visible track
        Binding(str(n), f"jump({n - 1})", f"Slide {n}", show=False)
        for n in range(1, 10)
    ]

    def __init__(self) -> None:
        super().__init__()
        self._config = Config.load()
        self._session: LessonSession | None = None
        self._running = False
        self._last_topic = ""

    def compose(self) -> ComposeResult:
        yield Header()

        with Vertical(id="input-panel"):
            if not self._config.gemini_api_key:
                yield Static(
                    "⚠  No GEMINI_API_KEY found. Set the env var or add "
                    "gemini_api_key to ~/.lessonplay/config.json",
                    classes="key-warning",
                )
            yield Label("What would you like to learn about?")
            yield Input(
                placeholder="e.g., How do black holes form?",
                id="topic-input",
            )
            with Horizontal(id="voice-row"):
                yield Label("Narrator:", id="voice-label")
                yield Select(
                    [(v, v) for v in VOICES],
                    value=self._config.voice,
                    id="voice-select",
                    allow_blank=False,
                )
            with Horizontal(id="transport-start"):
                yield Button("🚀 Generate", id="btn-generate", variant="primary")

        with Vertical(id="progress-panel"):
            yield Label("", id="progress-step")
            yield ProgressBar(total=None, show_eta=False, id="progress-bar")
            yield RichLog(id="progress-log", highlight=True, markup=True, wrap=True)

        with Vertical(id="player-panel"):
            yield Label("", id="slide-title")
            yield Label("", id="scene-label")
            yield Static("", id="slide-image")
            yield Static("", id="slide-narration")
            with Horizontal(id="transport-bar"):
                yield Button("◀ Prev", id="btn-prev")
                yield Button("▶ Play", id="btn-play", variant="primary")
                yield Button("Next ▶", id="btn-next")
                yield Button("💬 Ask", id="btn-ask")
                yield Button("↩ Back to Lesson", id="btn-back", variant="warning")
                yield Button("✨ Create New", id="btn-new")
            with Vertical(id="chat-panel"):
                yield RichLog(id="chat-log", markup=True, wrap=True)
                with Horizontal(id="chat-bar"):
                    yield Input(placeholder="Ask about this slide...", id="chat-input")
                    yield Button("🎬 Visualize", id="btn-visualize", variant="success")
                    yield Button("✕", id="btn-close-chat")

        with Vertical(id="error-panel"):
            yield Static("", id="error-message")
            with Horizontal(id="error-bar"):
                yield Button("🔁 Try Again", id="btn-retry", variant="primary")
                yield Button("✨ Create New", id="btn-error-new")

        yield Static("Ready. Enter a topic, then press 🚀 Generate.", id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        self._show("#input-panel")
        self.query_one("#chat-panel").display = False

    def on_unmount(self) -> None:
        if self._session is not None:
            self._session.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _show(self, panel: str) -> None:
        for name in _PANELS:
            self.query_one(name).display = name == panel

    def _log(self, msg: str) -> None:
        """Pipeline progress callback."""
        self.query_one("#progress-log", RichLog).write(_rich_format(msg))
        self.query_one("#progress-step", Label).update(escape(msg))

    def _set_status(self, msg: str) -> None:
        self.query_one("#status-bar", Static).update(msg)

    def _ensure_session(self) -> LessonSession:
        if self._session is None:
            gateway = GeminiGateway(self._config)
            self._session = LessonSession(
                gateway,
                SoundDeviceOutput(),
                voice_name=self._config.voice,
                progress_cb=self._log,
                on_change=self._refresh_player,
                sample_rate=self._config.sample_rate,
            )
        return self._session

    def _refresh_player(self) -> None:
        session = self._session
        if session is None:
            return
        engine = session.engine
        slide = engine.current_slide
        if slide is None:
            return

        title = "Visual Explanation" if engine.is_branch_active else session.title
        self.query_one("#slide-title", Label).update(escape(title))
        self.query_one("#scene-label", Label).update(
            f"{engine.scene_label}   ({engine.active_index + 1}/{engine.active_length})"
        )

        image = self.query_one("#slide-image", Static)
        if slide.has_image:
            image.update(f"🖼  {describe_image(slide.image_data)}: {escape(slide.visual_description)}")
            image.remove_class("missing")
        else:
            image.update(f"⚠  {PLACEHOLDER_TEXT}: {escape(slide.visual_description)}")
            image.add_class("missing")
        self.query_one("#slide-narration", Static).update(escape(slide.narration))

        play = self.query_one("#btn-play", Button)
        play.label = "⏸ Pause" if engine.is_playing else "▶ Play"
        play.disabled = not engine.can_play
        self.query_one("#btn-prev", Button).disabled = not engine.has_previous
        self.query_one("#btn-next", Button).disabled = not engine.has_next
        self.query_one("#btn-back", Button).display = engine.is_branch_active
        self.query_one("#btn-ask", Button).display = not engine.is_branch_active

    def _refresh_chat(self) -> None:
        session = self._session
        chat_log = self.query_one("#chat-log", RichLog)
        chat_log.clear()
        conversation = session.conversation if session else None
        if conversation is None:
            return
        for turn in conversation.turns:
            if turn.role is Role.USER:
                chat_log.write(f"[bold]You:[/bold] {escape(turn.text)}")
            else:
                chat_log.write(f"[cyan]Tutor:[/cyan] {escape(turn.text)}")
        if conversation.answer_in_flight:
            chat_log.write("[dim]Thinking...[/dim]")
        if conversation.visualization_in_flight:
            chat_log.write("[dim]Creating visual explanation...[/dim]")
        visualize = self.query_one("#btn-visualize", Button)
        visualize.disabled = self._visualizable_turn() is None or conversation.visualization_in_flight

    def _visualizable_turn(self) -> int | None:
        """Index of the newest answer that can be turned into slides."""
        conversation = self._session.conversation if self._session else None
        if conversation is None:
            return None
        turns = conversation.turns
        for idx in range(len(turns) - 1, 0, -1):
            turn = turns[idx]
            if turn.role is Role.ASSISTANT and turn.branch_eligible:
                return idx
        return None

    # ------------------------------------------------------------------
    # Button / key handlers
    # ------------------------------------------------------------------

    @on(Button.Pressed, "#btn-generate")
    @on(Input.Submitted, "#topic-input")
    def on_generate(self) -> None:
        self.action_generate()

    @on(Button.Pressed, "#btn-retry")
    def on_retry(self) -> None:
        self._launch(self._last_topic)

    @on(Button.Pressed, "#btn-prev")
    def on_prev_btn(self) -> None:
        self.action_previous()

    @on(Button.Pressed, "#btn-next")
    def on_next_btn(self) -> None:
        self.action_next()

    @on(Button.Pressed, "#btn-play")
    def on_play_btn(self) -> None:
        self.action_toggle_play()

    @on(Button.Pressed, "#btn-ask")
    def on_ask_btn(self) -> None:
        self.action_open_chat()

    @on(Button.Pressed, "#btn-close-chat")
    def on_close_chat(self) -> None:
        if self._session is not None:
            self._session.close_chat()
        self.query_one("#chat-panel").display = False

    @on(Button.Pressed, "#btn-back")
    def on_back_btn(self) -> None:
        self.action_back()

    @on(Button.Pressed, "#btn-new")
    @on(Button.Pressed, "#btn-error-new")
    def on_new_btn(self) -> None:
        self.action_new_lesson()

    @on(Select.Changed, "#voice-select")
    def on_voice_changed(self, event: Select.Changed) -> None:
        if event.value is Select.BLANK:
            return
        self._config.voice = str(event.value)

    @on(Input.Submitted, "#chat-input")
    def on_chat_submit(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        if not text or self._session is None or self._session.conversation is None:
            return
        event.input.value = ""
        self.run_worker(self._ask(text), group="ask")

    @on(Button.Pressed, "#btn-visualize")
    def on_visualize_btn(self) -> None:
        idx = self._visualizable_turn()
        if idx is None:
            return
        self.run_worker(self._visualize(idx), group="visualize")

    def action_generate(self) -> None:
        if self._running:
            return
        topic = self.query_one("#topic-input", Input).value.strip()
        if not topic:
            self._set_status("⚠  Please enter a topic.")
            return
        self._launch(topic)

    def action_toggle_play(self) -> None:
        if self._session is not None:
            self._session.toggle_play_pause()

    def action_next(self) -> None:
        if self._session is not None:
            self._session.next()

    def action_previous(self) -> None:
        if self._session is not None:
            self._session.previous()

    def action_jump(self, index: int) -> None:
        session = self._session
        if session is None or not 0 <= index < session.engine.active_length:
            return
        session.jump(index)

    def action_open_chat(self) -> None:
        session = self._session
        if session is None or session.conversation is None or session.engine.is_branch_active:
            return
        session.open_chat()
        self.query_one("#chat-panel").display = True
        self._refresh_chat()
        self.query_one("#chat-input", Input).focus()

    def action_back(self) -> None:
        session = self._session
        if session is None:
            return
        if session.chat_open:
            self.on_close_chat()
        elif session.close_branch():
            self._set_status("Back to the lesson.")

    def action_new_lesson(self) -> None:
        if self._running:
            return
        if self._session is not None:
            self._session.reset()
        self.query_one("#chat-panel").display = False
        self.query_one("#topic-input", Input).value = ""
        self._show("#input-panel")
        self._set_status("Ready. Enter a topic, then press 🚀 Generate.")

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def _launch(self, topic: str) -> None:
        try:
            self._ensure_session()
        except ValueError as e:
            self._set_status(f"⚠  {e}")
            return
        self._last_topic = topic
        self._running = True
        self.query_one("#progress-log", RichLog).clear()
        self.query_one("#progress-bar", ProgressBar).update(total=None, progress=0)
        self._show("#progress-panel")
        self._set_status(f"⏳ Generating lesson: {topic}")
        self.run_worker(self._generate(topic), exclusive=True, group="generate")

    async def _generate(self, topic: str) -> None:
        session = self._session
        bar = self.query_one("#progress-bar", ProgressBar)
        try:
            async for event in session.start(topic, self._config.voice):
                if isinstance(event, ProgressUpdate):
                    progress = event.progress
                    if progress.total_count:
                        bar.update(total=progress.total_count, progress=progress.completed_count)
                elif isinstance(event, LessonReady):
                    self._show("#player-panel")
                    self._refresh_player()
                    self._set_status(f"✅  {event.title} ({len(event.slides)} slides)")
                elif isinstance(event, LessonFailed):
                    self.query_one("#error-message", Static).update(f"❌  {escape(event.message)}")
                    self._show("#error-panel")
                    self._set_status("❌  Generation failed.")
        finally:
            self._running = False

    async def _ask(self, text: str) -> None:
        task = asyncio.ensure_future(self._session.send_question(text))
        # let the question land in the transcript before the answer arrives
        await asyncio.sleep(0)
        self._refresh_chat()
        try:
            await task
        except ConversationBusy:
            self._set_status("⏳ Still answering the previous question.")
        finally:
            self._refresh_chat()

    async def _visualize(self, turn_index: int) -> None:
        self.query_one("#btn-visualize", Button).disabled = True
        self._set_status("⏳ Creating visual explanation...")
        try:
            opened = await self._session.visualize(turn_index)
        except ConversationBusy:
            self._set_status("⏳ A visual explanation is already being generated.")
            return
        finally:
            self._refresh_chat()

        if opened:
            self.query_one("#chat-panel").display = False
            self._set_status("🎬 Playing visual explanation. Press Back to return.")
        else:
            self._set_status("⚠  Could not create the visual explanation.")
