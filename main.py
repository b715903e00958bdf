"""
main.py: Server launcher and entry point.

Run this file to start the TapTrack checkout server:

    python main.py

Interactive API docs are served at http://127.0.0.1:8000/docs

This file does NOT contain application logic. See app.py for the FastAPI
application, service wiring, and startup sequence.

Direct uvicorn usage:
    uvicorn app:app
"""

from __future__ import annotations

import os

import uvicorn


HOST = os.environ.get("TAPTRACK_HOST", "127.0.0.1")
PORT = int(os.environ.get("TAPTRACK_PORT", "8000"))


def main() -> None:
    """Start the TapTrack server."""
    print("=" * 60)
    print("  TapTrack | Device Checkout Tracker")
    print("=" * 60)
    print(f"  Server   : http://{HOST}:{PORT}")
    print(f"  API docs : http://{HOST}:{PORT}/docs")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    # Reload is off: the reconciliation thread must run in a single process.
    uvicorn.run(
        "app:app",
        host=HOST,
        port=PORT,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
