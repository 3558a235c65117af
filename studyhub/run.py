#!/usr/bin/env python
"""Start the StudyHub API with uvicorn on settings.PORT."""
import uvicorn
from dotenv import load_dotenv

load_dotenv()

from studyhub.core.config import settings  # noqa: E402  (after .env is loaded)


if __name__ == "__main__":
    print(f"\n[INFO] Starting backend server on port {settings.PORT}...")
    uvicorn.run("studyhub.main:app", host="0.0.0.0", port=settings.PORT, reload=settings.ENV == "development")
