from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional, Set
from contextlib import asynccontextmanager
import asyncio
from datetime import datetime

from pydantic import ValidationError
import structlog
import uvicorn

from convo_agent.domain.memory.storage.memory_storage import MemoryStorage, Storage
from convo_agent.domain.memory.turn_state import TurnState
from convo_agent.domain.models.messages import TurnContext
from convo_agent.domain.orchestration.core.tool_planner import ToolBasedPlanner
from convo_agent.domain.streaming.delivery_sink import create_sink
from convo_agent.infrastructure.config.settings import Settings, get_settings
from convo_agent.infrastructure.observability.logging import metrics, setup_logging
from .connection_manager import ConnectionManager
from .schema.events import ComponentEvent, ComponentPayload, ComponentType, EventType, ProgressData, UserMessage

logger = structlog.get_logger(__name__)

TURN_FAILED_MESSAGE = "AI request failed"


def create_app(
    planner: ToolBasedPlanner,
    storage: Optional[Storage] = None,
    connection_manager: Optional[ConnectionManager] = None,
) -> FastAPI:
    """Build the WebSocket app that runs one planner turn per user message"""

    manager = connection_manager or ConnectionManager()
    storage = storage if storage is not None else MemoryStorage()
    turn_tasks: Set[asyncio.Task] = set()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start background tasks and clean up on shutdown"""
        health_task = asyncio.create_task(manager.health_check())
        logger.info("WebSocket server started", planner=type(planner).__name__)

        yield

        health_task.cancel()
        for session_id in list(manager.active_connections.keys()):
            await manager.disconnect(session_id)

        planner.tracer.flush()
        logger.info("WebSocket server shutdown")

    app = FastAPI(title="Conversational Agent Server", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.planner = planner
    app.state.storage = storage
    app.state.connection_manager = manager

    async def process_user_message(session_id: str, context: TurnContext):
        """Run a planner turn for one inbound message and persist its state"""

        sink = create_sink(context, planner.model_config.stream, planner.model_config.enable_feedback_loop)
        if not manager.start_turn(session_id, sink):
            await manager.send_error(session_id, "A turn is already in progress", error_code="turn_in_progress")
            return

        try:
            await manager.send_event(
                session_id,
                ComponentEvent(
                    session_id=session_id,
                    payload=ComponentPayload(
                        component=ComponentType.PROGRESS,
                        data=ProgressData(status="Processing your request..."),
                    ),
                )
            )

            state = await TurnState.load(context, storage)
            await planner.run_turn(context, state, sink=sink)
            await state.save()

        except Exception as e:
            logger.exception("Error in agent processing", session_id=session_id, error=str(e))
            metrics.increment_counter("turns.errors")
            await manager.send_error(session_id, TURN_FAILED_MESSAGE, error_code=type(e).__name__)
        finally:
            manager.end_turn(session_id)

    @app.websocket("/ws/agent/{session_id}")
    async def agent_websocket(websocket: WebSocket, session_id: str):
        """Main WebSocket endpoint for agent interaction"""

        await manager.connect(websocket, session_id)

        async def sender(event):
            return await manager.send_event(session_id, event)

        try:
            while True:
                data = await websocket.receive_json()
                event_type = data.get("type")

                if event_type == EventType.USER_MESSAGE:
                    try:
                        message = UserMessage(**{key: value for key, value in data.items() if key != "type"})
                    except ValidationError as e:
                        logger.warning("Invalid user message", session_id=session_id, error=str(e))
                        await manager.send_error(session_id, "Invalid user message", error_code="invalid_message")
                        continue

                    context = TurnContext(
                        session_id=session_id,
                        conversation_id=message.conversation_id or session_id,
                        user_id=message.user_id or session_id,
                        user_name=message.user_name,
                        text=message.content,
                        attachments=message.attachments,
                        metadata=message.metadata or {},
                        sender=sender,
                    )
                    # Turns run in the background so a cancel can arrive mid-turn
                    task = asyncio.create_task(process_user_message(session_id, context))
                    turn_tasks.add(task)
                    task.add_done_callback(turn_tasks.discard)

                elif event_type == EventType.CANCEL:
                    if not manager.cancel_turn(session_id):
                        logger.debug("Cancel received with no running turn", session_id=session_id)

                else:
                    await manager.send_error(
                        session_id,
                        f"Unsupported event type: {event_type}",
                        error_code="unsupported_event",
                    )

        except WebSocketDisconnect:
            logger.info("Client disconnected", session_id=session_id)
        finally:
            await manager.disconnect(session_id)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "active_connections": len(manager.active_connections),
            "active_turns": len(manager.active_turns),
            "timestamp": datetime.utcnow().isoformat()
        }

    return app


def run(planner: ToolBasedPlanner, storage: Optional[Storage] = None, settings: Optional[Settings] = None):
    """Configure logging and serve the app with uvicorn"""

    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)
    app = create_app(planner, storage)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
