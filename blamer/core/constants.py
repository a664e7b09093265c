"""
Constants
Centralised storage for placeholder tokens, path types, and backtrace sentinels.
"""
MAX_MESSAGE_LENGTH = 1000

# Placeholders written into filtered messages. Always "[ALL CAPS]" so that
# views can recognise and style them.
PLACEHOLDER_ATTRIBUTES = "[ATTRIBUTES]"
PLACEHOLDER_DESCRIPTION = "[DESCRIPTION]"
PLACEHOLDER_ADDRESS = "[ADDRESS]"
PLACEHOLDER_SHA1 = "[SHA1]"
PLACEHOLDER_IPV4 = "[IPv4]"
PLACEHOLDER_NUMBER = "[NUMBER]"

# Project path classification
PATH_PROJECT = "project"
PATH_LIBRARY = "library"
PATH_FILTERED = "filtered"

# File names that are not really file names
META_FILE_NAMES = ("(irb)", "(eval)", "-e")

UNKNOWN_FILE = "(unknown)"
SIMPLE_BLAME_PREFIX = "[S] "

# Legacy array-encoded backtrace sentinels
LEGACY_ADDRESS = "_RETURN_ADDRESS_"
LEGACY_JS_ASSET = "_JS_ASSET_"
LEGACY_JAVA = "_JAVA_"

# Blamer strategies
BLAMER_RECENCY = "recency"
BLAMER_SIMPLE = "simple"
BLAMER_MESSAGE = "message"

# Placeholders for personal data found in occurrence messages
PLACEHOLDER_EMAIL = "[EMAIL?]"
PLACEHOLDER_PHONE = "[PHONE?]"
PLACEHOLDER_CARD = "[CC/BANK?]"
