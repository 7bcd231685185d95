"""
Helper script to run the FastAPI app with a predictable sys.path.
Usage:
  .venv/bin/python run_api.py
"""
import os
import sys

from uvicorn import run

ROOT = os.path.dirname(os.path.abspath(__file__))
BACKEND_APP_DIR = os.path.join(ROOT, "backend", "app")

if ROOT not in sys.path:
  sys.path.insert(0, ROOT)

# Ensure reloader subprocess also sees the project root on PYTHONPATH
os.environ["PYTHONPATH"] = os.pathsep.join(
  [ROOT] + [p for p in os.environ.get("PYTHONPATH", "").split(os.pathsep) if p]
)

if __name__ == "__main__":
  log_level = os.environ.get("APP_LOG_LEVEL", "info").lower()
  run(
    "backend.app.main:app",
    host=os.environ.get("HOST", "0.0.0.0"),
    port=int(os.environ.get("PORT", "3000")),
    reload=os.environ.get("RELOAD", "0") in {"1", "true", "TRUE", "True"},
    reload_dirs=[BACKEND_APP_DIR],
    log_level=log_level,
    access_log=True,
  )
