"""
Run script for batchguard API.
"""

import os
import uvicorn

from batchguard.infrastructure.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "batchguard.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=os.getenv("BATCHGUARD_DEV_MODE", "").lower() == "true",
        log_level="info"
    )
