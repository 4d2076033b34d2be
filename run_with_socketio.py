#!/usr/bin/env python3
"""
Run the chatbot API together with the Socket.IO notification channel.
"""

import uvicorn
from app.core.config import settings
from app.main import socket_app

if __name__ == "__main__":
    print(f"Starting {settings.app_name} with Socket.IO...")
    print("Agents and riders connect at: ws://localhost:8000/socket.io/")
    print("Chatbot endpoints under: http://localhost:8000/api/chatbot")
    print("Docs at: http://localhost:8000/docs")
    print()

    uvicorn.run(
        socket_app,
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower()
    )
