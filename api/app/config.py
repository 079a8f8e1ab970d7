import json
import os
from typing import Any

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")

STORE_TRANSACTION_MAX_ATTEMPTS = int(os.getenv("STORE_TRANSACTION_MAX_ATTEMPTS", "5"))

# Speed dating
SEARCH_DURATION_SECONDS = int(os.getenv("SEARCH_DURATION_SECONDS", "300"))
SEARCH_SESSION_MAX_AGE_SECONDS = int(os.getenv("SEARCH_SESSION_MAX_AGE_SECONDS", "300"))
SYNC_GROUP_WINDOW_MS = int(os.getenv("SYNC_GROUP_WINDOW_MS", "120000"))
SYNC_BOUNDARY_STEP_MS = int(os.getenv("SYNC_BOUNDARY_STEP_MS", "30000"))
SYNC_BUFFER_MS = int(os.getenv("SYNC_BUFFER_MS", "5000"))
NO_USERS_RETRY_SECONDS = int(os.getenv("NO_USERS_RETRY_SECONDS", "5"))
# 0 keeps retrying until the search countdown runs out.
NO_USERS_MAX_ATTEMPTS = int(os.getenv("NO_USERS_MAX_ATTEMPTS", "0"))
MATCH_RESULTS_LIMIT = int(os.getenv("MATCH_RESULTS_LIMIT", "3"))
DETAIL_COUNTDOWN_SECONDS = int(os.getenv("DETAIL_COUNTDOWN_SECONDS", "5"))
CHAT_DURATION_SECONDS = int(os.getenv("CHAT_DURATION_SECONDS", str(4 * 60 * 60)))
CHAT_REMINDER_SECONDS = int(os.getenv("CHAT_REMINDER_SECONDS", str(60 * 60)))
# in-memory coordinators untouched this long are dropped
COORDINATOR_IDLE_SECONDS = int(os.getenv("COORDINATOR_IDLE_SECONDS", str(5 * 60 * 60)))
DEFAULT_AGE_MIN = int(os.getenv("DEFAULT_AGE_MIN", "18"))
DEFAULT_AGE_MAX = int(os.getenv("DEFAULT_AGE_MAX", "50"))

MODE_SELECTION_GUARD_SECONDS = float(os.getenv("MODE_SELECTION_GUARD_SECONDS", "10"))
SESSION_CHECK_GUARD_SECONDS = float(os.getenv("SESSION_CHECK_GUARD_SECONDS", "5"))
LOCK_MODE_CHANGE_GUARD_SECONDS = float(os.getenv("LOCK_MODE_CHANGE_GUARD_SECONDS", "5"))

WELCOME_MESSAGE = "You are now connected through Speed Dating! You have 4 hours to chat."
PERMANENT_MATCH_MESSAGE = "Congratulations! You've been matched from Speed Dating. Your chat is now permanent."

# Lineup
SPOTLIGHT_DURATION_SECONDS = int(os.getenv("SPOTLIGHT_DURATION_SECONDS", str(4 * 60 * 60)))
ELIMINATION_POP_THRESHOLD = int(os.getenv("ELIMINATION_POP_THRESHOLD", "20"))
ELIMINATION_COOLDOWN_HOURS = int(os.getenv("ELIMINATION_COOLDOWN_HOURS", "48"))
ROTATION_REQUEST_MAX_AGE_SECONDS = int(os.getenv("ROTATION_REQUEST_MAX_AGE_SECONDS", "600"))
ROTATION_REQUEST_BATCH_SIZE = int(os.getenv("ROTATION_REQUEST_BATCH_SIZE", "10"))

ROTATION_JOB_INTERVAL_SECONDS = int(os.getenv("ROTATION_JOB_INTERVAL_SECONDS", "60"))
ROTATION_JOB_RETRIES = int(os.getenv("ROTATION_JOB_RETRIES", "3"))
REQUEST_JOB_INTERVAL_SECONDS = int(os.getenv("REQUEST_JOB_INTERVAL_SECONDS", "60"))
ELIMINATION_JOB_INTERVAL_SECONDS = int(os.getenv("ELIMINATION_JOB_INTERVAL_SECONDS", "300"))
ELIMINATION_JOB_RETRIES = int(os.getenv("ELIMINATION_JOB_RETRIES", "1"))
JOB_RETRY_DELAY_SECONDS = float(os.getenv("JOB_RETRY_DELAY_SECONDS", "5"))

TURN_NOTIFICATION_MESSAGE = "It's your turn in the Line-Up! You're now the featured contestant."
ELIMINATION_NOTIFICATION_MESSAGE = "You've been popped out of the Line-Up. You can rejoin in 48 hours."
LINEUP_MATCH_WELCOME_MESSAGE = "You've been matched from the Line-Up! Say hello to start the conversation."
LINEUP_MATCH_NOTIFICATION_MESSAGE = "You have a new match with {name}!"
LINEUP_MESSAGE_MAX_LENGTH = int(os.getenv("LINEUP_MESSAGE_MAX_LENGTH", "1000"))

DEFAULT_SCORING_CONFIG: dict[str, Any] = {
    "INTEREST_W": float(os.getenv("INTEREST_W", "0.30")),
    "LIFESTYLE_W": float(os.getenv("LIFESTYLE_W", "0.35")),
    "AGE_W": float(os.getenv("AGE_W", "0.15")),
    "LOCATION_W": float(os.getenv("LOCATION_W", "0.10")),
    "BASELINE_W": float(os.getenv("BASELINE_W", "0.10")),
    "BASELINE_SCORE": float(os.getenv("BASELINE_SCORE", "65")),
    "BOOST_FACTOR": float(os.getenv("BOOST_FACTOR", "1.4")),
    "BONUS_POINTS": float(os.getenv("BONUS_POINTS", "5")),
    "JITTER_MAX": int(os.getenv("JITTER_MAX", "4")),
    "NO_INTERESTS_SCORE": float(os.getenv("NO_INTERESTS_SCORE", "65")),
    "NO_LIFESTYLE_SCORE": float(os.getenv("NO_LIFESTYLE_SCORE", "60")),
}

if os.getenv("SCORING_CONFIG_JSON"):
    try:
        DEFAULT_SCORING_CONFIG.update(json.loads(os.getenv("SCORING_CONFIG_JSON", "{}")))
    except json.JSONDecodeError:
        pass

RL_SPEED_DATING_LIMIT = int(os.getenv("RL_SPEED_DATING_LIMIT", "120"))
RL_LINEUP_ACTION_LIMIT = int(os.getenv("RL_LINEUP_ACTION_LIMIT", "240"))
RL_ROTATION_REQUEST_LIMIT = int(os.getenv("RL_ROTATION_REQUEST_LIMIT", "20"))
RL_WINDOW_SECONDS = int(os.getenv("RL_WINDOW_SECONDS", "60"))
