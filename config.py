import os

# Base directories
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Paths
LOG_FILE = os.getenv("PRACTICE_LOG_FILE", os.path.join(BASE_DIR, "practice.log"))

# Bridge server
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))
SESSION_TTL = int(os.getenv("SESSION_TTL", "3600"))          # seconds
SESSION_CLEANUP_INTERVAL = 300                                # seconds

# Remote practice API
API_BASE_URL = os.getenv("PRACTICE_API_URL", "http://localhost:5000/api")
API_TIMEOUT = float(os.getenv("PRACTICE_API_TIMEOUT", "30"))

# Topic generation polling
POLL_MAX_ATTEMPTS = int(os.getenv("POLL_MAX_ATTEMPTS", "20"))
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "2.0"))
TOPIC_PAGE_SIZE = 14
MAX_TOPICS_PER_SUBJECT = 70   # curriculum cap enforced server-side

# Test configuration limits
MAX_SUBJECTS = 5
MIN_QUESTIONS, MAX_QUESTIONS = 1, 100
MIN_DURATION_MINUTES, MAX_DURATION_MINUTES = 5, 300
DEFAULT_QUESTIONS = 20
DEFAULT_DURATION_MINUTES = 30

# Access / timer
DEFAULT_FREE_QUESTION_LIMIT = int(os.getenv("FREE_QUESTION_LIMIT", "5"))
TIMER_TICK_SECONDS = 1.0
TIMER_WARNING_RATIO = 0.10    # warn when <= 10% of the total time is left
PASS_SCORE = 60.0
