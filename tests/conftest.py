# tests/conftest.py
"""
Pytest configuration and fixtures.
Adds src/ to sys.path so `import papertable` works without installing.
"""

import os
import sys
import tempfile
from pathlib import Path

project_root = Path(__file__).parent.parent
src_root = project_root / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

# Keep batch/OCR file logs out of the working tree.
os.environ.setdefault("PAPERTABLE_LOG_DIR", tempfile.mkdtemp(prefix="papertable-logs-"))
# Deterministic Fernet key for encrypted model API keys.
os.environ.setdefault("PAPERTABLE_SECRET_KEY", "papertable-test-secret")
