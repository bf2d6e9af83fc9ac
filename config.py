import os

# Logging
LOG_LEVEL = os.getenv("TAGSPEED_LOG_LEVEL", "INFO").upper()

# Measurement defaults
DEFAULT_DEVICE = os.getenv("TAGSPEED_DEFAULT_DEVICE", "mobile")
DEFAULT_NETWORK = os.getenv("TAGSPEED_DEFAULT_NETWORK", "4g")
DEFAULT_NUMBER_OF_REPORTS = int(os.getenv("TAGSPEED_NUMBER_OF_REPORTS", "1"))

# Browser
HEADLESS = os.getenv("TAGSPEED_HEADLESS", "1") != "0"
NAVIGATION_TIMEOUT_MS = int(os.getenv("TAGSPEED_NAVIGATION_TIMEOUT_MS", "60000"))
VITALS_WINDOW_MS = int(os.getenv("TAGSPEED_VITALS_WINDOW_MS", "2000"))

# 0 disables the per-scenario timeout
SCENARIO_TIMEOUT_S = float(os.getenv("TAGSPEED_SCENARIO_TIMEOUT_S", "0"))

# CLI polling
POLL_INTERVAL_S = float(os.getenv("TAGSPEED_POLL_INTERVAL_S", "3"))

# Third-party entity sources (optional, merged into the built-in table)
ENTITIES_FILE = os.getenv("TAGSPEED_ENTITIES_FILE", "")
ENTITIES_URL = os.getenv("TAGSPEED_ENTITIES_URL", "")

# Paths
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
REPORTS_DIR = os.getenv("TAGSPEED_REPORTS_DIR", os.path.join(BASE_DIR, "dist"))
