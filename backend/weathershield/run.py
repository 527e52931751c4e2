from __future__ import annotations

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "weathershield.main:app",
        host=os.getenv("WEATHERSHIELD_HOST", "127.0.0.1"),
        port=int(os.getenv("WEATHERSHIELD_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
