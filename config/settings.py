"""
Configuration Settings Module
Centralized configuration constants for the Tav task loop.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# --- Paths ---
CONFIG_DIR = os.path.dirname(os.path.abspath(__file__))
DEFINITIONS_PATH = os.getenv("TASKLOOP_DEFINITIONS", os.path.join(CONFIG_DIR, "definitions.yaml"))
DB_PATH = os.getenv("TASKLOOP_DB", os.path.join("data", "taskloop.db"))

# --- Tick Engine ---
MAX_LOOP_LIMIT = int(os.getenv("TASKLOOP_MAX_LOOP", "100"))  # Iteration cap per tick call

# --- Inventory ---
DEFAULT_STACK_LIMIT = int(os.getenv("TASKLOOP_DEFAULT_STACK_LIMIT", "99"))

# --- Priorities ---
PRIORITY_MIN = 1
PRIORITY_MAX = 9
DEFAULT_PRIORITY = 5

# --- Logging ---
LOG_LEVEL = os.getenv("TASKLOOP_LOG_LEVEL", "INFO").upper()
