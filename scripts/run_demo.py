"""
Run the BeAligned reflection API locally.

Usage:
    python scripts/run_demo.py

Set SUPABASE_URL and SUPABASE_KEY (or a .env file) to talk to a real
project; without them sessions live in memory and chat calls fail inline.
BEALIGNED_PORT overrides the port.
"""

import os

import uvicorn

from bealigned.core.config import ReflectionConfig


def main():
    config = ReflectionConfig.from_env()
    port = int(os.environ.get("BEALIGNED_PORT", "8000"))
    backend = "Supabase" if config.has_supabase else "in-memory (chat functions disabled)"

    print("BeAligned reflection server")
    print(f"  backend:     {backend}")
    print(f"  advancement: {config.advancement}")
    print(f"  docs:        http://localhost:{port}/docs")

    uvicorn.run("bealigned.api.app:app", host="0.0.0.0", port=port, reload=config.debug)


if __name__ == "__main__":
    main()
