#!/usr/bin/env python3
"""
Run script for the Storyteller narration backend
"""
import uvicorn

from storyteller.config.settings import Settings
from storyteller.main import create_app

if __name__ == "__main__":
    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
