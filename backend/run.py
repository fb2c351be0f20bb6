import os
import uvicorn

from marketplace.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "marketplace.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", 8000)),
        reload=not settings.is_production,
        workers=1 if not settings.is_production else int(os.environ.get("WEB_CONCURRENCY", 4)),
        log_level=settings.log_level.lower(),
    )
