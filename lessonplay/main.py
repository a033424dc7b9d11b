"""Entry point for lessonplay."""
from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

if sys.platform == 'win32':
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


def _setup_logging() -> None:
    log_dir = Path.home() / ".lessonplay"
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(log_dir / "lessonplay.log"),
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_slides(title: str, slides) -> None:
    from .imagegen import describe_image

    print(f"\n✅ {title}")
    for slide in slides:
        audio = f"{len(slide.audio_data)} bytes PCM" if slide.has_audio else "no narration"
        print(f"\n  Scene {slide.scene_number}")
        print(f"    Narration: {slide.narration}")
        print(f"    Visual:    {slide.visual_description}")
        print(f"    Image:     {describe_image(slide.image_data)}")
        print(f"    Audio:     {audio}")


async def _run_headless(topic: str, voice: str) -> int:
    from .config import Config
    from .gateway import GeminiGateway
    from .pipeline import Pipeline, PipelineFailed

    config = Config.load()
    try:
        gateway = GeminiGateway(config)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    pipeline = Pipeline(gateway, progress_cb=print)
    try:
        slides = await pipeline.run_main(topic, voice)
    except PipelineFailed as e:
        print(f"Error: {e}")
        return 1

    _print_slides(pipeline.script.title, slides)
    return 0


def run_headless(topic: str, voice: str | None = None) -> None:
    """Generate a lesson without the TUI, printing progress to stdout."""
    from .config import DEFAULT_VOICE, VOICES

    voice = voice or DEFAULT_VOICE
    if voice not in VOICES:
        print(f"Unknown voice {voice!r}; choose one of: {', '.join(VOICES)}")
        sys.exit(1)
    sys.exit(asyncio.run(_run_headless(topic, voice)))


def main() -> None:
    """Launch LessonPlay: TUI by default, headless with --topic."""
    _setup_logging()

    args = sys.argv[1:]

    # Headless mode: python -m lessonplay.main --topic "..." [--voice Kore]
    if "--topic" in args:
        idx = args.index("--topic")
        if idx + 1 >= len(args):
            print("Usage: --topic <text> [--voice <name>]")
            sys.exit(1)
        topic = args[idx + 1]
        voice = None
        if "--voice" in args:
            vidx = args.index("--voice")
            if vidx + 1 >= len(args):
                print("Usage: --topic <text> [--voice <name>]")
                sys.exit(1)
            voice = args[vidx + 1]
        run_headless(topic, voice)
        return

    from .tui import LessonPlayApp

    app = LessonPlayApp()
    app.run()


if __name__ == "__main__":
    main()
