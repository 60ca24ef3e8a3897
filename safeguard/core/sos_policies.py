"""SOS and guardian policy constants."""

from __future__ import annotations

# Guardians a single user may register
MAX_GUARDIANS = 5

# Trigger rate limit: at most SOS_RATE_LIMIT triggers per window
SOS_RATE_LIMIT = 3
SOS_RATE_WINDOW_SECONDS = 60

# Text used when the alert note is empty
DEFAULT_NOTE = "Help!"

# Upper bound on free-text notes
NOTE_MAX_LENGTH = 500

# Priority that receives a voice call in addition to the text
VOICE_CALL_PRIORITY = 1

MAP_LINK_TEMPLATE = "https://www.google.com/maps?q={lat},{lng}"

# Audit actions
AUDIT_SOS_TRIGGERED = "SOS_TRIGGERED"
AUDIT_SOS_RESOLVED = "SOS_RESOLVED"
