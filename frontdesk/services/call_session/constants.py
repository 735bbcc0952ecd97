"""Lines spoken to callers."""

MENU_PROMPT = "Hello. Say or press 1 for AI screening, or 2 to forward"
MENU_HINTS = "one, two, 1, 2"
MENU_REPROMPT = "Please say or press 1 or 2."
NO_RESPONSE_GOODBYE = "We did not receive a response. Goodbye."

SCREENING_PROMPT = "Please tell me how I can help. This call is being handled by AI secretary."
FORWARD_UNAVAILABLE_PROMPT = "Forwarding is not configured. Please tell me how I can help."
REPEAT_PROMPT = "I did not catch that. Please tell me who is calling and what it is regarding."
CONNECTING = "Connecting you now."

HOLD_TIMEOUT_GOODBYE = "Sorry, nobody is available to take your call right now. Goodbye."
VOICEMAIL_PROMPT = "Please leave a message after the tone."

SYSTEM_ERROR = "We encountered a system error. Please try again later."
CONFIGURATION_INCOMPLETE = "Service configuration is incomplete. Please try again later."
UNKNOWN_CALL = "Sorry, we could not find this call. Goodbye."

# Provider CallStatus values that mean the call is over
TERMINAL_CALL_STATUSES = ["completed", "failed", "busy", "no-answer", "canceled"]
