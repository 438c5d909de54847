#!/usr/bin/env python3
"""Run the Doc Assembly API server."""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

# Load environment variables
if Path('.env').exists():
    load_dotenv()
    print("[INFO] Loaded environment from .env file")

if not os.getenv("API_SECRET_KEY"):
    print("[WARN] API_SECRET_KEY not set; the API will accept unauthenticated requests")
if not os.getenv("OPENAI_API_KEY"):
    print("[INFO] OPENAI_API_KEY not set; using the rule-based extractor")

# Run the server
if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    host = os.getenv("HOST", "0.0.0.0")

    print(f"\n{'='*60}")
    print(f"Starting Doc Assembly API")
    print(f"{'='*60}")
    print(f"Host: {host}")
    print(f"Port: {port}")
    print(f"Docs: http://localhost:{port}/docs")
    print(f"{'='*60}\n")

    uvicorn.run(
        "api.main:app",
        host=host,
        port=port,
        reload=os.getenv("RELOAD", "false").lower() == "true",
        log_level="info"
    )
