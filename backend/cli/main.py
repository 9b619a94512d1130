"""
Terminal client (`tutor`).

    tutor chat [--speak]          text chat; /file PATH attaches a file
    tutor lesson TOPIC [--segmented]
                                  spoken lesson with checkpoint questions
    tutor call                    live voice call, Enter hangs up

Audio plays on the default output device through one shared AudioContext.
Failed replies print the apology line; voice failures return to the prompt.
"""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from dotenv import load_dotenv
from google import genai

from adapters.errors import UpstreamError
from adapters.live.base import LiveConnectionError
from adapters.llm.gemini import GeminiTutorClient
from adapters.llm.parsing import StructuredLesson
from adapters.tts.gemini_tts import GeminiSpeechSynthesizer
from audio.devices import MicrophonePermissionError, SpeakerSink
from audio.pcm import FormatError
from config import AppConfig
from constants import APOLOGY_TEXT
from context.conversation import Attachment
from lesson.checkpoints import Checkpoint
from lesson.scheduler import LessonState
from observability import logger
from session.connection_status import LiveSessionState
from session.gateway import TutorGateway


GREETING = (
    "Namaste! I'm JB AI, your personal mentor. Ready to learn something new "
    "today? Poochho, jo bhi doubt hai!"
)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

async def _ask(prompt: str) -> str:
    """Read one line without blocking the event loop."""
    return await asyncio.to_thread(input, prompt)


def _say(text: str = "") -> None:
    print(text, flush=True)


def render_lesson(lesson: StructuredLesson) -> str:
    """Plain-text rendering of a structured lesson card."""
    lines = []
    if lesson.lesson_title:
        lines.append(f"== {lesson.lesson_title} ==")
    for index, step in enumerate(lesson.lesson_steps, start=1):
        lines.append(f"{index}. {step.explanation}")
        if step.check_question:
            lines.append(f"   ? {step.check_question}")
    if lesson.real_life_example:
        lines.append(f"Example: {lesson.real_life_example}")
    if lesson.motivational_quote:
        lines.append(f'"{lesson.motivational_quote}"')
    return "\n".join(lines)


def load_attachment(path: str) -> Attachment:
    file_path = Path(path).expanduser()
    mime_type, _ = mimetypes.guess_type(file_path.name)
    return Attachment(
        data=file_path.read_bytes(),
        mime_type=mime_type or "application/octet-stream",
        name=file_path.name,
    )


def _build_gateway(config: AppConfig, **callbacks: Any) -> TutorGateway:
    client = genai.Client(api_key=config.require_api_key())
    return TutorGateway(
        config=config,
        model=GeminiTutorClient.from_config(config, client=client),
        speech=GeminiSpeechSynthesizer.from_config(config, client=client),
        sink_factory=SpeakerSink,
        **callbacks,
    )


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------

async def run_chat(config: AppConfig, *, speak: bool) -> int:
    gateway = _build_gateway(config)
    pending: Optional[Attachment] = None
    _say(GREETING)

    try:
        while True:
            try:
                line = (await _ask("you> ")).strip()
            except EOFError:
                return 0

            if not line:
                continue
            if line in ("/quit", "/exit"):
                return 0
            if line.startswith("/file "):
                try:
                    pending = load_attachment(line[len("/file "):].strip())
                except OSError as exc:
                    _say(f"(cannot read file: {exc})")
                    continue
                _say(f"(attached {pending.name}, {pending.mime_type})")
                continue

            try:
                reply = await gateway.chat(line, pending)
            except (UpstreamError, FormatError):
                _say(f"jb> {APOLOGY_TEXT}")
                continue
            finally:
                pending = None

            _say(f"jb> {reply.text}")
            if reply.lesson is not None:
                _say(render_lesson(reply.lesson))
                if speak and reply.lesson.voice_script_ssml:
                    try:
                        await gateway.speak(reply.lesson.voice_script_ssml)
                    except (UpstreamError, FormatError):
                        _say("(speech unavailable)")
    finally:
        await gateway.close()


async def run_lesson(config: AppConfig, topic: str, *, segmented: bool) -> int:
    events: asyncio.Queue[Checkpoint | LessonState] = asyncio.Queue()
    gateway = _build_gateway(
        config,
        on_checkpoint=events.put_nowait,
        on_lesson_state=events.put_nowait,
    )

    try:
        _say(f"(preparing a lesson on {topic!r}...)")
        try:
            scheduler = await gateway.start_lesson(topic, segmented=segmented)
        except (UpstreamError, FormatError):
            _say(APOLOGY_TEXT)
            return 1
        if scheduler is None:
            return 1

        while True:
            item = await events.get()

            if isinstance(item, Checkpoint):
                _say(f"\njb> {item.question}")
                try:
                    answer = (await _ask("you> ")).strip() or "I am not sure."
                except EOFError:
                    return 0
                await gateway.answer(answer)
                continue

            # State notifications are checked against the live state: load()
            # of a continuation passes through idle on its way to talking.
            if item is LessonState.IDLE and scheduler.state is LessonState.IDLE:
                _say("\n(lesson complete)")
                return 0
            if item is LessonState.PAUSED and scheduler.state is LessonState.PAUSED:
                _say("(could not prepare a reply, continuing the lesson)")
                scheduler.play()
    finally:
        await gateway.close()


async def run_call(config: AppConfig) -> int:
    ended = asyncio.Event()

    def _on_state(state: LiveSessionState) -> None:
        _say(f"({state.value})")
        if state is LiveSessionState.IDLE:
            ended.set()

    gateway = _build_gateway(
        config,
        on_call_state=_on_state,
        on_transcript=lambda text: _say(f"jb> {text}"),
    )

    try:
        try:
            await gateway.start_call()
        except MicrophonePermissionError as exc:
            _say(f"(microphone unavailable: {exc})")
            return 1
        except LiveConnectionError:
            _say("(could not reach the tutor, please try again)")
            return 1

        _say("Listening. Press Enter to hang up.")
        hang_up = asyncio.create_task(_ask(""))
        waiter = asyncio.create_task(ended.wait())
        await asyncio.wait({hang_up, waiter}, return_when=asyncio.FIRST_COMPLETED)
        waiter.cancel()
        if not hang_up.done():
            _say("(call ended, press Enter to exit)")
            await hang_up
        return 0
    finally:
        await gateway.close()


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tutor", description="JB AI tutor in the terminal")
    parser.add_argument("--verbose", action="store_true", help="Print structured logs at LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    chat = sub.add_parser("chat", help="Text chat with the tutor")
    chat.add_argument("--speak", action="store_true", help="Play each lesson's voice script")

    lesson = sub.add_parser("lesson", help="Spoken lesson with checkpoint questions")
    lesson.add_argument("topic", help="What to learn about")
    lesson.add_argument(
        "--segmented",
        action="store_true",
        help="Keep generating new lesson parts after the last checkpoint",
    )

    sub.add_parser("call", help="Live voice call with the tutor")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    load_dotenv()
    config = AppConfig.load_from_env()
    # Logs share stdout with the conversation; keep them quiet unless asked
    logger.configure(
        level=config.log_level if args.verbose else "WARNING",
        enabled=config.enable_json_logs,
    )

    try:
        config.require_api_key()
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    if args.command == "chat":
        runner = run_chat(config, speak=args.speak)
    elif args.command == "lesson":
        runner = run_lesson(config, args.topic, segmented=args.segmented)
    else:
        runner = run_call(config)

    try:
        return asyncio.run(runner)
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
