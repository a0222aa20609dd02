#!/usr/bin/env python3
"""
WA Checker Configuration Module
"""

import os

# Application Information
APP_NAME = "WA Checker"
APP_VERSION = "1.0.0"
APP_DESCRIPTION = "Bulk-check phone numbers for WhatsApp presence"

# Default Settings
DEFAULT_EXPORT_FORMAT = 'json'

# Request Settings
REQUEST_TIMEOUT = 15
MAX_RETRIES = 3
RETRY_DELAY = 1.0
RETRY_BACKOFF_POLICIES = ('fixed', 'linear', 'exponential')

# Concurrency
DEFAULT_CONCURRENT_REQUESTS = 1
MAX_CONCURRENT_REQUESTS = 10

# Rate Limiting
# Pause dispatch once the remaining quota drops to this value.
RATE_LIMIT_THRESHOLD = 0
# Used when the API answers 429 without telling us when the window resets.
RATE_LIMIT_COOLDOWN = 60
# Upper bound for a single pause so a bogus reset header can't stall a run for days.
MAX_RATE_LIMIT_PAUSE = 3600

# Engine
QUEUE_POLL_INTERVAL = 0.1
SESSION_SAVE_INTERVAL = 10
WORKER_JOIN_TIMEOUT = 5.0

# Phone number validation
MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15
MIN_DIGIT_RATIO = 0.8
DEFAULT_REGION_HINTS = ['US', 'GB', 'CA', 'AU', 'DE', 'FR', 'ES', 'IT', 'BR', 'IN']

# WhatsApp data API (RapidAPI)
DEFAULT_API_HOST = "whatsapp-data1.p.rapidapi.com"
DEFAULT_BASE_URL = f"https://{DEFAULT_API_HOST}"
LOOKUP_PATH = "/number/{number}"

RATE_LIMIT_HEADERS = {
    'limit': 'x-ratelimit-requests-limit',
    'remaining': 'x-ratelimit-requests-remaining',
    'reset': 'x-ratelimit-requests-reset',
    'monthly_limit': 'x-ratelimit-monthly-limit',
    'monthly_remaining': 'x-ratelimit-monthly-remaining',
    'monthly_reset': 'x-ratelimit-monthly-reset',
}

# Structured error codes reported by the lookup client
NOT_FOUND_ERROR_CODES = ('not_found', 'not_on_whatsapp', 'number_not_found')
RATE_LIMIT_ERROR_CODES = ('rate_limited',)

# Storage
ENV_HOME = 'WA_CHECKER_HOME'
ENV_API_KEY = 'WA_CHECKER_API_KEY'
DEFAULT_DATA_DIR = os.path.join(os.path.expanduser('~'), '.wa_checker')
SETTINGS_FILE = 'settings.json'
SESSIONS_DIR = 'sessions'

DEFAULT_SETTINGS = {
    'api_key': '',
    'max_retries': MAX_RETRIES,
    'retry_delay': RETRY_DELAY,
    'retry_backoff': 'fixed',
    'timeout': REQUEST_TIMEOUT,
    'throw_on_limit': False,
    'concurrent_requests': DEFAULT_CONCURRENT_REQUESTS,
    'stop_on_error': False,
    'rate_limit_threshold': RATE_LIMIT_THRESHOLD,
    'base_url': DEFAULT_BASE_URL,
    'api_host': DEFAULT_API_HOST,
    'save_results': True,
    'auto_export': False,
    'default_export_format': DEFAULT_EXPORT_FORMAT,
}

# Random number generation patterns: 'x' is any digit, '[..]' a digit from the set
COUNTRY_PATTERNS = {
    'US': {'name': 'United States', 'patterns': ['+1[23456789]xx[23456789]xxxxxx']},
    'CA': {'name': 'Canada', 'patterns': ['+1[23456789]xx[23456789]xxxxxx']},
    'GB': {'name': 'United Kingdom', 'patterns': ['+447xxxxxxxxx', '+4420xxxxxxxx', '+44121xxxxxxx']},
    'DE': {'name': 'Germany', 'patterns': ['+4915xxxxxxxx', '+4917xxxxxxxx', '+4930xxxxxxxx']},
    'FR': {'name': 'France', 'patterns': ['+336xxxxxxxx', '+337xxxxxxxx', '+331xxxxxxxx']},
    'ES': {'name': 'Spain', 'patterns': ['+346xxxxxxxx', '+347xxxxxxxx', '+3491xxxxxxx']},
    'IT': {'name': 'Italy', 'patterns': ['+3933xxxxxxxx', '+3934xxxxxxxx']},
    'AU': {'name': 'Australia', 'patterns': ['+614xxxxxxxx', '+612xxxxxxxx', '+613xxxxxxxx']},
    'BR': {'name': 'Brazil', 'patterns': ['+55119xxxxxxxx', '+55219xxxxxxxx', '+5511xxxxxxxx']},
    'IN': {'name': 'India', 'patterns': ['+91[6789]xxxxxxxxx', '+9111xxxxxxxx', '+9122xxxxxxxx']},
    'MX': {'name': 'Mexico', 'patterns': ['+521xxxxxxxxxx', '+5255xxxxxxxx']},
    'AR': {'name': 'Argentina', 'patterns': ['+5491xxxxxxxx', '+5411xxxxxxxx']},
    'JP': {'name': 'Japan', 'patterns': ['+81[789]0xxxxxxxx', '+813xxxxxxxx']},
    'KR': {'name': 'South Korea', 'patterns': ['+8210xxxxxxxx', '+822xxxxxxxx']},
    'CN': {'name': 'China', 'patterns': ['+861[3456789]xxxxxxxxx', '+8610xxxxxxxx']},
}
MAX_GENERATED_NUMBERS = 10000

# Status messages
STATUS_MESSAGES = {
    'active': '✅',
    'not_present': '❌',
    'api_error': '🚨',
    'pending': '⏳',
    'warning': '⚠️',
    'info': 'ℹ️',
    'success': '🎉',
    'checking': '📱',
}

# File patterns
INPUT_FILE_EXTENSIONS = ['.csv', '.xlsx', '.txt']
OUTPUT_FORMATS = ['json', 'csv', 'xlsx']

# Error messages
ERROR_MESSAGES = {
    'missing_api_key': "❌ No API key configured. Run 'settings --api-key KEY' first.",
    'no_valid_numbers': "❌ No valid numbers to check.",
    'session_not_found': "❌ Session not found: {session_id}",
    'not_resumable': "⚠️  Session {session_id} is {status} and cannot be resumed.",
    'interrupted': "⚠️  Cancelling... waiting for in-flight lookups to finish.",
}

# Success messages
SUCCESS_MESSAGES = {
    'numbers_loaded': "✅ Loaded {valid} valid numbers ({invalid} invalid, {duplicates} duplicates removed)",
    'check_complete': "🎯 Check completed: {active} of {total} numbers are on WhatsApp",
    'check_cancelled': "⏸️  Check cancelled after {completed} of {total} numbers. Resume with: resume {session_id}",
    'exported': "✅ Results exported to {path}",
    'settings_saved': "✅ Settings saved",
    'numbers_generated': "✅ Generated {count} numbers for {country}",
}


def get_data_dir() -> str:
    """Directory holding settings and sessions (overridable via WA_CHECKER_HOME)."""
    return os.environ.get(ENV_HOME) or DEFAULT_DATA_DIR
