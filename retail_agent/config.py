import os

MODEL_NAME = os.getenv("RETAIL_AGENT_MODEL", "gpt-4.1-mini")
MAX_TURNS = 6 # Maximum number of recent user/assistant turns to keep in context.
LOG_LEVEL = os.getenv("RETAIL_AGENT_LOG_LEVEL", "INFO")
DEFAULT_PLATFORM = os.getenv("RETAIL_AGENT_PLATFORM", "amazon")

# Remote call timeouts in seconds. A timeout is a failure, never "still pending".
TIMEOUT_LOGIN_CHECK = float(os.getenv("TIMEOUT_LOGIN_CHECK", "5"))
TIMEOUT_TAB_QUERY = float(os.getenv("TIMEOUT_TAB_QUERY", "5"))
TIMEOUT_NAVIGATE = float(os.getenv("TIMEOUT_NAVIGATE", "10"))
TIMEOUT_SEARCH = float(os.getenv("TIMEOUT_SEARCH", "10"))
TIMEOUT_SEARCH_AND_FILTER = float(os.getenv("TIMEOUT_SEARCH_AND_FILTER", "45"))
TIMEOUT_FILTER_APPLY = float(os.getenv("TIMEOUT_FILTER_APPLY", "10"))
TIMEOUT_FILTER_VERIFY = float(os.getenv("TIMEOUT_FILTER_VERIFY", "6"))
TIMEOUT_RESULTS = float(os.getenv("TIMEOUT_RESULTS", "10"))
TIMEOUT_BUY_CLICK = float(os.getenv("TIMEOUT_BUY_CLICK", "15"))
TIMEOUT_ADD_TO_CART = float(os.getenv("TIMEOUT_ADD_TO_CART", "15"))
TIMEOUT_PAGE_CONTENT = float(os.getenv("TIMEOUT_PAGE_CONTENT", "10"))
TIMEOUT_ORDER_DETAILS = float(os.getenv("TIMEOUT_ORDER_DETAILS", "10"))
TIMEOUT_EXECUTE_ACTION = float(os.getenv("TIMEOUT_EXECUTE_ACTION", "15"))
TIMEOUT_LOGIN_HANDOFF = float(os.getenv("TIMEOUT_LOGIN_HANDOFF", "120"))
TIMEOUT_LLM = float(os.getenv("TIMEOUT_LLM", "30"))

# Retry caps. Every loop in the agent is bounded by one of these.
MAX_FILTER_ATTEMPTS = int(os.getenv("MAX_FILTER_ATTEMPTS", "3")) # Attempts per filter before it is marked failed
MAX_NAV_ATTEMPTS = int(os.getenv("MAX_NAV_ATTEMPTS", "3")) # Navigation attempts (escalating technique) per verification
MAX_NAV_RETRIES = int(os.getenv("MAX_NAV_RETRIES", "3")) # Failed product-page verifications before the session gives up
MAX_RESULTS_ATTEMPTS = int(os.getenv("MAX_RESULTS_ATTEMPTS", "2")) # GET_SEARCH_RESULTS attempts on transient channel errors
MAX_BUY_ATTEMPTS = int(os.getenv("MAX_BUY_ATTEMPTS", "2")) # Buy-click attempts before LLM escalation

# Delays in seconds.
NAV_SETTLE_DELAY = float(os.getenv("NAV_SETTLE_DELAY", "1.5")) # Multiplied by attempt number
RETRY_BACKOFF = float(os.getenv("RETRY_BACKOFF", "1.0")) # Base backoff between retries
FILTER_POLL_INTERVAL = float(os.getenv("FILTER_POLL_INTERVAL", "0.5"))
STEP_DELAY = float(os.getenv("STEP_DELAY", "2.0")) # Pause for in-place page updates

MAX_PAGE_TEXT = 30000 # Characters of page text sent to the LLM
MAX_STATUS_MESSAGES = 200 # Status lines kept on a session
