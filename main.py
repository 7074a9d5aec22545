import os
import sys
import traceback
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

# Load .env before reading PORT/HOST/ENVIRONMENT
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


if __name__ == "__main__":
    """
    Entry point for Valet Clock.
    Starts the web API; status monitors run inside the server process.
    """
    root_dir = os.path.dirname(os.path.abspath(__file__))
    sys.path.insert(0, root_dir)

    PORT = int(os.getenv("PORT", "8000"))
    HOST = os.getenv("HOST", "127.0.0.1")
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

    print(f"Starting Valet Clock from {root_dir}...")
    print(f"Environment: {ENVIRONMENT}")
    print(f"API available at http://{HOST}:{PORT}")

    try:
        # Single worker: the session registry and status monitors live in-process
        uvicorn.run(
            "web.main:app",
            host=HOST,
            port=PORT,
            reload=ENVIRONMENT == "development",
            log_level="info" if ENVIRONMENT == "production" else "debug",
        )
    except KeyboardInterrupt:
        print("\n\nShutdown complete.")
        sys.exit(0)
    except Exception as e:
        print(f"\nFatal error: {e}", file=sys.stderr)
        traceback.print_exc(file=sys.stderr)
        sys.exit(1)
