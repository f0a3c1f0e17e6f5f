"""Test configuration.

Forces the in-memory message store so the app tests never need a database,
and keeps the tests directory importable for the shared fakes module.
"""

import os
import sys
from pathlib import Path

# Set env flags BEFORE importing application modules
os.environ["CHAT_DATABASE_URL"] = ""
os.environ.setdefault("CHAT_LOG_LEVEL", "DEBUG")

sys.path.insert(0, str(Path(__file__).parent))
