import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3001))
# Listen-port fallback: try PORT, PORT+1, ... before giving up
PORT_ATTEMPTS = int(os.getenv("PORT_ATTEMPTS", 10))
PORT_RETRY_DELAY = float(os.getenv("PORT_RETRY_DELAY", 0.05))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")

# Seconds a single websocket send may take before the recipient is skipped
SEND_TIMEOUT = float(os.getenv("SEND_TIMEOUT", 5.0))
# Frames waiting for one slow connection before newer ones are dropped
SEND_QUEUE_SIZE = int(os.getenv("SEND_QUEUE_SIZE", 256))

DEFAULT_USERNAME = "Wanderer"
USERNAME_MAX_LENGTH = 40
CHAT_MAX_LENGTH = 400

# Participant timing (seconds) and correction tolerances
PING_INTERVAL = 2.0
RESYNC_INTERVAL = 1.5
DRIFT_THRESHOLD = 0.35
RATE_EPSILON = 0.01
