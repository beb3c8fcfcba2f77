#!/usr/bin/env python3
"""
============================================================================
Evaluation Desk v1.0.0
Server Runner
============================================================================

Reliability Level: STANDARD
Input Constraints: HOST / PORT / LOG_LEVEL environment variables
Side Effects: Binds the HTTP port

USAGE:
    python main.py

============================================================================
"""

import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=HOST,
        port=PORT,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
