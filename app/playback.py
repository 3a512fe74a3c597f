"""
PlaybackSimulator: plays a whole recording through a CallSession as if it were live.

Chunks are dispatched concurrently (bounded by MAX_CONCURRENT_CHUNKS) and may
finish out of order; the session keeps the transcript sorted. With
simulate_realtime, a chunk is only sent once playback has passed its end, as
the copilot UI does while the agent listens. Silent chunks are skipped but
still consume a chunk index.

Usage: python -m app.playback call.wav [--realtime] [--provider auto]
"""
from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Callable

from app.audio.chunker import AudioChunk, AudioChunker
from app.config import get_settings
from app.session import CallSession, ChunkOutcome, ChunkRequest

logger = logging.getLogger(__name__)


class PlaybackSimulator:
    def __init__(
        self,
        session: CallSession,
        chunker: AudioChunker | None = None,
        max_concurrency: int | None = None,
        simulate_realtime: bool | None = None,
        on_update: Callable[[ChunkOutcome], None] | None = None,
        on_complete: Callable[[CallSession], None] | None = None,
    ) -> None:
        settings = get_settings()
        self._session = session
        self._chunker = chunker or AudioChunker()
        self._max_concurrency = max(1, max_concurrency or settings.MAX_CONCURRENT_CHUNKS)
        self._realtime = settings.SIMULATE_REALTIME if simulate_realtime is None else simulate_realtime
        self._on_update = on_update
        self._on_complete = on_complete

    async def run(self, data: bytes, filename: str | None = None) -> list[ChunkOutcome]:
        """Process the recording; returns outcomes of non-silent chunks in chunk order."""
        loop = asyncio.get_running_loop()
        chunks = await loop.run_in_executor(None, self._chunker.split, data, filename)
        logger.info("Session %s: playing %d chunks", self._session.session_id, len(chunks))

        semaphore = asyncio.Semaphore(self._max_concurrency)
        started = loop.time()

        async def play(chunk: AudioChunk) -> ChunkOutcome | None:
            if self._realtime:
                await asyncio.sleep(max(0.0, started + chunk.end_time - loop.time()))
            if chunk.is_silence:
                logger.debug("Chunk %d: silence detected, skipping", chunk.sequence_number)
                return None
            async with semaphore:
                outcome = await self._session.process_chunk(
                    ChunkRequest(
                        audio=chunk.blob,
                        timestamp=chunk.start_time,
                        chunk_index=chunk.sequence_number,
                        channel_role=chunk.channel_role,
                    )
                )
            if self._on_update is not None:
                self._on_update(outcome)
            return outcome

        outcomes = await asyncio.gather(*(play(chunk) for chunk in chunks))
        if self._on_complete is not None:
            self._on_complete(self._session)
        return [o for o in outcomes if o is not None]


async def _main(args: argparse.Namespace) -> int:
    from app.asr.local_whisper import load_whisper_model
    from app.asr.service import build_transcription_service
    from app.logging_config import configure_logging

    settings = get_settings()
    configure_logging(settings)
    model = load_whisper_model() if settings.WHISPER_BACKEND == "local" else None
    session = CallSession(
        session_id="cli",
        transcription=build_transcription_service(settings, whisper_model=model),
        preference=args.provider,
        merge_window=settings.MERGE_WINDOW_SECONDS,
    )
    with open(args.path, "rb") as f:
        data = f.read()

    simulator = PlaybackSimulator(session, simulate_realtime=args.realtime)
    outcomes = await simulator.run(data, filename=args.path)
    await session.close()

    print(session.assembler.to_plain_text())
    state = session.state
    print(f"\nstage={state.stage.label} turns={state.turn_count} health={state.health_score}")
    failed = [o for o in outcomes if o.failed]
    if failed:
        print(f"{len(failed)} chunk(s) failed")
    return 1 if failed else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Transcribe a call recording chunk by chunk")
    parser.add_argument("path", help="audio file (wav, mp3, ...)")
    parser.add_argument("--realtime", action="store_true", help="pace chunks at playback speed")
    parser.add_argument("--provider", choices=["primary", "secondary", "auto"], default="auto")
    raise SystemExit(asyncio.run(_main(parser.parse_args())))


if __name__ == "__main__":
    main()
