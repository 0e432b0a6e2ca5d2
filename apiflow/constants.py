"""Default values shared across apiflow components."""

DEFAULT_VARIABLES_KEY = "api_tester_variables"
DEFAULT_HISTORY_KEY = "api_tester_history"
DEFAULT_FLOWS_KEY = "api_admin_flows"
DEFAULT_STATE_KEY = "domain_state"

DEFAULT_HISTORY_MAX_ENTRIES = 50
DEFAULT_STORAGE_NAMESPACE = "apiflow:"

DEFAULT_VARIABLE_PREFIX = "{{"
DEFAULT_VARIABLE_SUFFIX = "}}"
DEFAULT_JSON_PATH_INDICATOR = "$"

DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_CATEGORY = "General"
GENERATED_FLOW_TAG = "generated"
