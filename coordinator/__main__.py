from __future__ import annotations

import uvicorn

from coordinator.config import settings


def main() -> int:
    uvicorn.run(
        "coordinator.app:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
