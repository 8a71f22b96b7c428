# backend/conftest.py
import sys
from pathlib import Path

# Add backend root to PYTHONPATH
BACKEND_ROOT = Path(__file__).resolve().parent
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))
