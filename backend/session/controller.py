from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from functools import partial
from typing import Any, Awaitable, Callable, Coroutine

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from backend.config import Settings, get_settings
from backend.models.ws_messages import (
    AudioStreamCommand,
    ChatMessageCommand,
    ClientCommand,
    JoinMeetingCommand,
    MeetingStatusData,
    MeetingStatusEvent,
    PongData,
    PongEvent,
    StopMeetingCommand,
    TextStreamCommand,
    TranscriptionData,
    TranscriptionEvent,
    error_event,
    parse_command,
)
from backend.services.connection_registry import Connection, ConnectionRegistry
from backend.services.errors import MalformedCommandError, NoActiveMeetingError, RegistryClosedError
from backend.services.text_service import TextService
from backend.services.transcription import TranscriptionOrchestrator
from backend.utils.time_utils import epoch_millis

Handler = Callable[[Connection, Any], Awaitable[None]]


class SessionController:
    """Decodes websocket frames and routes them to the transcription pipeline."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        orchestrator: TranscriptionOrchestrator,
        text_service: TextService,
        settings: Settings | None = None,
    ):
        self.registry = registry
        self.orchestrator = orchestrator
        self.text_service = text_service
        self.settings = settings or get_settings()
        self.logger = logging.getLogger(__name__)
        self._tasks: set[asyncio.Task] = set()
        self._handlers: dict[str, Handler] = {
            "join_meeting": self._join_meeting,
            "audio_stream": self._audio_stream,
            "text_stream": self._text_stream,
            "chat_message": self._chat_message,
            "stop_meeting": self._stop_meeting,
            "ping": self._ping,
            "pong": self._pong,
        }

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()
        try:
            connection = self.registry.admit(websocket)
        except RegistryClosedError:
            await websocket.close(code=1012)
            return

        writer = asyncio.create_task(self._drain_outbox(connection, websocket))
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                self._spawn(self.handle_frame(connection, raw))
        except (WebSocketDisconnect, RuntimeError):
            self.logger.debug("Receive loop ended for client %s", connection.id)
        finally:
            self.registry.remove(connection.id)
            writer.cancel()
            with suppress(asyncio.CancelledError):
                await writer
            if (
                websocket.client_state == WebSocketState.CONNECTED
                and websocket.application_state == WebSocketState.CONNECTED
            ):
                with suppress(RuntimeError):
                    await websocket.close(code=1000)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _drain_outbox(self, connection: Connection, websocket: WebSocket) -> None:
        while True:
            frame = await connection.outbox.get()
            try:
                await websocket.send_text(frame)
            except Exception:
                # left registered; the liveness sweep reaps it
                self.logger.warning("Failed to send message to client %s", connection.id, exc_info=True)
                connection.is_open = False
                return

    async def handle_frame(self, connection: Connection, raw: str | bytes) -> None:
        # any inbound traffic counts as a liveness reply
        self.registry.mark_alive(connection.id)
        try:
            command = parse_command(raw)
        except MalformedCommandError as exc:
            self.logger.warning("Invalid message from client %s: %s", connection.id, exc)
            self.registry.send(connection, error_event("Invalid message format", "INVALID_MESSAGE"))
            return

        try:
            await self.dispatch(connection, command)
        except NoActiveMeetingError as exc:
            self.logger.info("Rejected %s from client %s: not in a meeting", exc.command_type, connection.id)
            self.registry.send(connection, error_event("No active meeting", "NO_ACTIVE_MEETING"))
        except Exception:
            self.logger.exception("WebSocket message handling error for client %s", connection.id)
            self.registry.send(connection, error_event("Failed to process message", "MESSAGE_PROCESSING_ERROR"))

    async def dispatch(self, connection: Connection, command: ClientCommand) -> None:
        handler = self._handlers[command.type]
        await handler(connection, command)

    def _require_meeting(self, connection: Connection, command_type: str) -> str:
        if not connection.meeting_id:
            raise NoActiveMeetingError(command_type)
        return connection.meeting_id

    def _meeting_emitter(self, meeting_id: str):
        return partial(self.registry.broadcast_to_meeting, meeting_id)

    async def _join_meeting(self, connection: Connection, command: JoinMeetingCommand) -> None:
        self.registry.join_meeting(connection.id, command.meeting_id)
        self.logger.info("Client %s joined meeting %s", connection.id, command.meeting_id)
        self.registry.send(
            connection,
            MeetingStatusEvent(
                data=MeetingStatusData(
                    meeting_id=command.meeting_id,
                    status="active",
                    duration=0,
                    speaker_count=1,
                )
            ),
        )

    async def _audio_stream(self, connection: Connection, command: AudioStreamCommand) -> None:
        meeting_id = self._require_meeting(connection, command.type)
        await self.orchestrator.process_utterance(meeting_id, command.audio_text, self._meeting_emitter(meeting_id))

    async def _text_stream(self, connection: Connection, command: TextStreamCommand) -> None:
        meeting_id = self._require_meeting(connection, command.type)
        await self.orchestrator.relay_partial_text(
            meeting_id,
            command.partial_text,
            command.speaker_info,
            self._meeting_emitter(meeting_id),
        )

    async def _chat_message(self, connection: Connection, command: ChatMessageCommand) -> None:
        meeting_id = self._require_meeting(connection, command.type)
        try:
            async with self.orchestrator.meeting_lock(meeting_id):
                async for chunk in self.text_service.stream_chat_reply(meeting_id, command.content):
                    self.registry.send(
                        connection,
                        TranscriptionEvent(
                            data=TranscriptionData(
                                meeting_id=meeting_id,
                                speaker_name=self.settings.assistant_name,
                                speaker_initials=self.settings.assistant_initials,
                                speaker_color=self.settings.assistant_color,
                                content=chunk,
                                is_streaming=True,
                            )
                        ),
                    )
        except Exception:
            self.logger.exception("Chat reply failed for client %s in meeting %s", connection.id, meeting_id)
            self.registry.send(connection, error_event("Failed to process chat message", "CHAT_ERROR"))

    async def _stop_meeting(self, connection: Connection, command: StopMeetingCommand) -> None:
        joined = self._require_meeting(connection, command.type)
        meeting_id = command.meeting_id or joined
        await self.orchestrator.finalize_meeting(meeting_id, self._meeting_emitter(meeting_id))

    async def _ping(self, connection: Connection, command: Any) -> None:
        self.registry.send(connection, PongEvent(data=PongData(timestamp=epoch_millis())))

    async def _pong(self, connection: Connection, command: Any) -> None:
        self.registry.mark_alive(connection.id)
