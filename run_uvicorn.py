# run_uvicorn.py
# Launcher used for debugging (no uvicorn reload subprocess).
import os

# Safe defaults so import-time DB code doesn't explode if env vars are missing.
os.environ.setdefault("DATABASE_URL", "sqlite:///./dev_local.db")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("PUBLIC_BASE_URL", "http://127.0.0.1:8000")

from showpass.main import app  # noqa: E402

if __name__ == "__main__":
    import uvicorn

    # reload=False keeps everything in one process for the debugger
    uvicorn.run(app, host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")), reload=False)
