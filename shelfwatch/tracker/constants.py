"""Constants for lifecycle tracking."""

# A checkout that disappears within this many days of its due date counts
# as a normal return.
NEAR_DUE_DAYS = 3

# Substrings of the format field that mark a digital item
DIGITAL_FORMAT_MARKERS = ("eBook", "eAudiobook", "Digital")

# Rationale recorded for every first sighting
NEW_ITEM_NOTE = "New item"

# Default report windows, in days
DEFAULT_UNEXPECTED_DAYS_BACK = 30
DEFAULT_MISSING_DAYS_BACK = 30
DEFAULT_RECENT_ITEMS_DAYS_BACK = 90

# Log component names
COMPONENT_CLASSIFIER = "classifier"
COMPONENT_DETECTOR = "detector"
COMPONENT_REPORTS = "reports"
COMPONENT_RETENTION = "retention"
COMPONENT_CLI = "cli"
