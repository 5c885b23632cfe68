#!/usr/bin/env python3
"""
Backend startup wrapper for FitAI.

Usage: python -m fitai.run_backend  (or the fitai-backend console script)
Host, port and reload come from HOST, PORT and RELOAD in the environment.
"""
import os
import sys

import uvicorn


def server_options() -> dict:
    return {
        "host": os.getenv("HOST", "0.0.0.0"),
        "port": int(os.getenv("PORT", "8000")),
        "reload": os.getenv("RELOAD", "").lower() in ("1", "true", "yes"),
        "log_level": os.getenv("LOG_LEVEL", "info").lower(),
        "access_log": True,
    }


def main() -> int:
    options = server_options()
    print("[Backend] Starting FitAI Backend")
    print(f"[Backend] Server: http://{options['host']}:{options['port']}")
    print("[Backend] Press CTRL+C to stop")
    try:
        uvicorn.run("fitai.main:app", **options)
    except KeyboardInterrupt:
        print("\n[Backend] Shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
