"""
Shared test setup.

The application engine is built from settings at import time, so the
database URL is pointed at in-memory SQLite before any storyguard module
loads. Startup then creates its tables in memory instead of a file in the
working directory.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
