import os
import sys
from pathlib import Path

# Settings are read once at import time, so these must be set before the app modules load.
os.environ.setdefault("VIDSHARE_BCRYPT_ROUNDS", "4")
os.environ.setdefault("VIDSHARE_JWT_SECRET", "test-secret")
os.environ.setdefault("VIDSHARE_DATABASE_NAME", "vidshare_test")
os.environ.setdefault("VIDSHARE_LOG_LEVEL", "WARNING")

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
