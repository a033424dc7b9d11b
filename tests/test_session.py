import asyncio

import pytest

from lessonplay.player import PlaybackState
from lessonplay.session import LessonFailed, LessonReady, LessonSession, ProgressUpdate

from conftest import FakeGateway, FakeOutput, FakeScheduler


def _session(gw=None, steps=None):
    gw = gw or FakeGateway()
    output = FakeOutput()
    session = LessonSession(
        gw,
        output,
        progress_cb=(steps.append if steps is not None else None),
        scheduler=FakeScheduler(),
    )
    return session, gw, output


async def _collect(session, topic="Plants", voice=None):
    return [event async for event in session.start(topic, voice)]


def test_start_success():
    steps = []
    session, gw, output = _session(steps=steps)
    events = asyncio.run(_collect(session, voice="Kore"))

    assert isinstance(events[-1], LessonReady)
    assert all(isinstance(e, ProgressUpdate) for e in events[:-1])
    completed = [e.progress.completed_count for e in events[:-1]]
    assert completed == sorted(completed)
    assert completed[-1] == 3

    ready = events[-1]
    assert ready.title == "Photosynthesis"
    assert len(ready.slides) == 3
    assert session.voice_name == "Kore"
    assert session.engine.state is PlaybackState.MAIN_ACTIVE
    assert session.conversation is not None
    assert steps[0] == "Drafting script..."


def test_start_failure():
    gw = FakeGateway()
    gw.fail_script = True
    session, _, _ = _session(gw)
    events = asyncio.run(_collect(session))

    assert isinstance(events[-1], LessonFailed)
    assert "boom" in events[-1].message
    assert sum(not isinstance(e, ProgressUpdate) for e in events) == 1
    assert session.engine.state is PlaybackState.IDLE
    assert session.conversation is None


def test_question_pauses_narration():
    session, gw, output = _session()

    async def scenario():
        await _collect(session)
        assert session.engine.is_playing
        return await session.send_question("Why green?")

    answer = asyncio.run(scenario())
    assert answer.text == gw.answer
    assert not session.engine.is_playing
    assert not session.engine.auto_play_enabled
    assert gw.questions[0][1] == "Narration 1"


def test_visualize_opens_and_closes_branch():
    session, gw, _ = _session()

    async def scenario():
        await _collect(session)
        session.next()
        conv = session.open_chat()
        await session.send_question("Why green?")
        opened = await session.visualize(len(conv.turns) - 1)
        return opened

    assert asyncio.run(scenario())
    assert session.engine.state is PlaybackState.BRANCH_ACTIVE
    assert session.engine.is_playing
    assert not session.chat_open
    assert gw.branch_requests == [("Narration 2", "Why green?")]

    assert session.close_branch()
    assert session.engine.active_index == 1
    assert not session.engine.is_playing


def test_visualize_failure_keeps_lesson():
    gw = FakeGateway()
    gw.fail_branch = True
    session, _, _ = _session(gw)

    async def scenario():
        await _collect(session)
        await session.send_question("Why green?")
        return await session.visualize(1)

    assert not asyncio.run(scenario())
    assert session.engine.state is PlaybackState.MAIN_ACTIVE


def test_reset():
    session, _, output = _session()
    asyncio.run(_collect(session))

    session.reset()
    assert session.engine.state is PlaybackState.IDLE
    assert session.conversation is None
    assert session.title == ""
    assert session.engine.live_handles == 0
    assert output.loaded is None


def test_blank_question_keeps_narration_running():
    session, gw, _ = _session()

    async def scenario():
        await _collect(session)
        with pytest.raises(ValueError):
            await session.send_question("   ")

    asyncio.run(scenario())
    assert session.engine.is_playing
    assert session.engine.auto_play_enabled
    assert session.conversation.turns == ()
    assert gw.questions == []


def test_jump_resumes_narration():
    session, _, _ = _session()
    asyncio.run(_collect(session))
    session.engine.pause()

    session.jump(2)
    assert session.engine.active_index == 2
    assert session.engine.is_playing
