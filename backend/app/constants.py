"""Shared constants."""

# Pagination
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

# Chat limits
MAX_MESSAGE_LENGTH = 10000
MAX_CONVERSATION_HISTORY = 50
MAX_SESSION_ID_LENGTH = 128
SESSION_ID_PATTERN = r"^[A-Za-z0-9_.:\-]{1,128}$"
MAX_IDEMPOTENCY_KEY_LENGTH = 128

# Context assembly
VISIT_HISTORY_LIMIT = 10
RECENT_CHAT_LIMIT = 20
LINKED_HISTORY_VISITS = 5
RECENT_SESSIONS_LIMIT = 10
