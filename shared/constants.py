"""
Application Constants

Central location for the limits and timings the streaming engine depends on.
"""

# === Telegram Limits ===
TELEGRAM_MESSAGE_LIMIT = 4096
TELEGRAM_CALLBACK_DATA_LIMIT = 64
CALLBACK_ANSWER_LIMIT = 200
SAFE_MESSAGE_LIMIT = 4000  # final renders are split above this

# === Streaming ===
STREAM_MESSAGE_LENGTH_LIMIT = 3900
STREAM_OVERFLOW_MARGIN = 50
THINKING_SPLIT_RESERVE = 100
THINKING_SPLIT_RATIO = 1.2  # formatted/raw length ratio of a thinking block
TEXT_SPLIT_RATIO = 1.5      # formatted/raw length ratio of answer text
STREAM_UPDATE_INTERVAL_SECONDS = 0.5
TYPING_INTERVAL_SECONDS = 5.0
ERROR_RENDER_RETRY_DELAY_SECONDS = 15.0

# === Edit Rate Limits ===
EDIT_WINDOW_SECONDS = 60.0
EDIT_SOFT_CAP = 10
EDIT_HARD_CAP = 20
EDIT_MIN_INTERVAL_SECONDS = 0.5

# === Idle Status Rotation ===
IDLE_BASE_INTERVAL_SECONDS = 2.5
IDLE_STRETCH_STEP_SECONDS = 0.5
IDLE_MAX_STRETCH = 5
IDLE_TOLERANCE_SECONDS = 0.1
STATUS_ROTATE_SECONDS = 3.0

# === Markers ===
STOPPED_MARKER = "[stopped]"
EMPTY_RESPONSE_MARKER = "[Empty response]"
NO_IMAGE_MARKER = "[no image in response]"
IMAGE_PLACEHOLDER = "🖼"
INITIAL_STATUS_TEXT = "✽ Thinking..."

# === Callbacks ===
RESPONSE_CALLBACK_PREFIX = "resp"

# === Output Display ===
TEXT_TRUNCATE_LIMIT = SAFE_MESSAGE_LIMIT
