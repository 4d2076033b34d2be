import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.chat import routes as chat_routes
from app.chat.services import ChatbotService, build_chatbot_service
from app.core.config import Settings, settings
from app.core.logging import configure_logging
from app.websocket.app import create_socket_app
from app.websocket.manager import SocketManager, socket_manager

logger = logging.getLogger(__name__)


def create_app(
    config: Settings = settings,
    service: ChatbotService = None,
    manager: SocketManager = socket_manager,
) -> FastAPI:
    configure_logging(config.log_level, config.log_json)
    chatbot = service or build_chatbot_service(config)
    manager.attach(chatbot.events)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        dispatcher = asyncio.create_task(chatbot.events.run())
        logger.info("%s started", config.app_name)
        try:
            yield
        finally:
            dispatcher.cancel()
            try:
                await dispatcher
            except asyncio.CancelledError:
                pass
            await chatbot.close()
            logger.info("%s stopped", config.app_name)

    app = FastAPI(title=config.app_name, lifespan=lifespan)
    app.state.chatbot = chatbot

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_routes.router)
    return app


app = create_app()

# Create the combined app with Socket.IO
socket_app = create_socket_app(app)
