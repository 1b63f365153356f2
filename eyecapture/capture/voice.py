"""
voice.py

Instruction channel for the capture gate.

``speak`` is fire-and-forget: it must return immediately so the tick
handler never waits on audio. The pyttsx3 channel owns its engine on a
worker thread; a newer instruction replaces one that has not been
spoken yet.
"""

from __future__ import annotations

import logging
import queue
import sys
import threading
from typing import Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_RATE = 0.8
DEFAULT_VOLUME = 0.7
BASE_WORDS_PER_MINUTE = 200

_STOP = object()


class SpeechChannel:
    """Base channel: remembers the last instruction, speaks nothing."""

    def __init__(self) -> None:
        self.last_instruction: Optional[str] = None

    def speak(self, text: str) -> None:
        if not text:
            return
        self.last_instruction = text
        self._deliver(text)

    def _deliver(self, text: str) -> None:
        pass

    def close(self) -> None:
        pass


class ConsoleSpeechChannel(SpeechChannel):
    """Prints instructions instead of speaking them."""

    def __init__(self, stream=None) -> None:
        super().__init__()
        self.stream = stream or sys.stdout

    def _deliver(self, text: str) -> None:
        print(f"[INSTRUCTION]: {text}", file=self.stream, flush=True)


def _init_engine():
    import pyttsx3

    if sys.platform.startswith("win"):
        return pyttsx3.init("sapi5")
    if sys.platform == "darwin":
        return pyttsx3.init("nsss")
    return pyttsx3.init()  # espeak on Linux


class Pyttsx3SpeechChannel(SpeechChannel):
    """
    Text-to-speech via pyttsx3.

    rate / volume are fractions of the engine defaults (0.8 / 0.7).
    If the engine cannot start, instructions are logged and the
    channel keeps working silently.
    """

    def __init__(self, rate: float = DEFAULT_RATE, volume: float = DEFAULT_VOLUME, lang: str = "en") -> None:
        super().__init__()
        self.rate = rate
        self.volume = volume
        self.lang = lang

        self._pending: "queue.Queue" = queue.Queue(maxsize=1)
        self._closed = threading.Event()
        self._worker = threading.Thread(target=self._run, name="speech", daemon=True)
        self._worker.start()

    def _deliver(self, text: str) -> None:
        if self._closed.is_set():
            return
        # latest instruction wins
        try:
            self._pending.get_nowait()
        except queue.Empty:
            pass
        try:
            self._pending.put_nowait(text)
        except queue.Full:
            LOGGER.debug("Speech queue busy, dropped: %s", text)

    def _configure(self, engine) -> None:
        engine.setProperty("rate", int(BASE_WORDS_PER_MINUTE * self.rate))
        engine.setProperty("volume", float(self.volume))
        for voice in engine.getProperty("voices") or []:
            languages = [str(l) for l in (getattr(voice, "languages", None) or [])]
            if any(self.lang in l for l in languages):
                engine.setProperty("voice", voice.id)
                break

    def _run(self) -> None:
        try:
            engine = _init_engine()
            self._configure(engine)
        except Exception as e:
            LOGGER.warning("Speech engine unavailable (%s); instructions will only be logged", e)
            engine = None

        while True:
            text = self._pending.get()
            if text is _STOP:
                break
            LOGGER.info("Speaking: %s", text)
            if engine is None:
                continue
            try:
                engine.say(text)
                engine.runAndWait()
            except RuntimeError as e:
                LOGGER.warning("Speech failed: %s", e)

        if engine is not None:
            engine.stop()

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self._pending.get_nowait()
        except queue.Empty:
            pass
        try:
            self._pending.put(_STOP, timeout=1.0)
        except queue.Full:
            LOGGER.warning("Speech worker did not drain; leaving daemon thread behind")
            return
        if threading.current_thread() is not self._worker:
            self._worker.join(timeout=2.0)
