from typing import Protocol
import asyncio
import logging
import subprocess

from meeting_backend.app.clients.transcription_client import TranscriptionClient
from meeting_backend.app.models.audio import AudioFileStatus, Transcript, TranscriptSegment
from meeting_backend.app.repositories.audio_file_repository import AudioFileRepository
from meeting_backend.app.utils.audio_probe import AudioProbe


class Transcriber(Protocol):
    def transcribe(self, file_path: str) -> dict: ...


class Prober(Protocol):
    def probe(self, file_path: str) -> dict: ...


class AudioProcessingPipeline:
    """Runs after a chunked upload is finalized: probes the audio file,
    transcribes it and records each status step on the audio file record."""

    def __init__(
        self,
        audio_files: AudioFileRepository,
        transcriber: Transcriber | None = None,
        prober: Prober | None = None,
    ) -> None:
        self.__audio_files = audio_files
        self.__transcriber = transcriber
        self.__prober = prober
        self.__logger = logging.getLogger(__name__)

    @property
    def transcriber(self) -> Transcriber:
        if self.__transcriber is None:
            self.__transcriber = TranscriptionClient()
        return self.__transcriber

    @property
    def prober(self) -> Prober:
        if self.__prober is None:
            self.__prober = AudioProbe()
        return self.__prober

    def _build_segments(self, raw_segments: list) -> list[TranscriptSegment]:
        segments = []
        for seg in raw_segments:
            segments.append(
                TranscriptSegment(
                    start=float(seg.get("start", 0.0)),
                    end=float(seg.get("end", 0.0)),
                    text=str(seg.get("text", "")).strip(),
                    speaker=seg.get("speaker"),
                )
            )
        return segments

    async def probe(self, audio_file_id: int, file_path: str) -> None:
        """Store duration and format details. A failed probe is recorded but does not stop transcription."""
        loop = asyncio.get_running_loop()
        try:
            probed = await loop.run_in_executor(None, self.prober.probe, file_path)
        except (OSError, RuntimeError, ValueError, subprocess.TimeoutExpired) as e:
            self.__logger.warning(f"Duration extraction failed for audio file {audio_file_id}: {e}")
            await self.__audio_files.update_processing_metadata(audio_file_id, {"probe_error": str(e)})
            return

        await self.__audio_files.update_processing_metadata(audio_file_id, probed)
        self.__logger.info(f"Audio file {audio_file_id} duration: {probed.get('duration')}s")

    async def transcribe(self, file_path: str) -> dict:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.transcriber.transcribe, file_path)

    async def process(self, audio_file_id: int) -> None:
        audio_file = await self.__audio_files.get(audio_file_id)
        if audio_file is None:
            self.__logger.warning(f"Audio file {audio_file_id} vanished before processing")
            return

        try:
            await self.__audio_files.update_status(audio_file_id, AudioFileStatus.PROCESSING)
            await self.probe(audio_file_id, audio_file.file_path)
            await self.__audio_files.update_status(audio_file_id, AudioFileStatus.PROCESSED)

            await self.__audio_files.update_status(audio_file_id, AudioFileStatus.TRANSCRIBING)

            result = await self.transcribe(audio_file.file_path)
            transcript = Transcript(
                audio_file_id=audio_file_id,
                text=result.get("text", ""),
                segments=self._build_segments(result.get("segments", [])),
            )
            await self.__audio_files.save_transcript(transcript)
            await self.__audio_files.update_status(audio_file_id, AudioFileStatus.TRANSCRIBED)
            self.__logger.info(f"Transcribed audio file {audio_file_id} ({len(transcript.segments)} segments)")

        except Exception as e:
            # background task: nothing upstream to report to
            self.__logger.exception(f"Processing failed for audio file {audio_file_id}")
            await self.__audio_files.update_status(audio_file_id, AudioFileStatus.FAILED)
            await self.__audio_files.update_processing_metadata(audio_file_id, {"transcription_error": str(e)})
