"""Application-wide constants.

Values that come from the banking aggregation API's contract (status strings,
error messages, field sizes) live here so the client, the login orchestrator
and the validators agree on them.
"""


class DirectoryConstants:
    """Constraints on banking directory records."""

    NAME_MIN_LENGTH = 4
    NAME_MAX_LENGTH = 90


class CredentialConstants:
    """Constraints on submitted provider credentials."""

    USERNAME_MIN_LENGTH = 4
    USERNAME_MAX_LENGTH = 255
    PASSWORD_MIN_LENGTH = 4
    PASSWORD_MAX_LENGTH = 255

    # Fields always sent to /login/, never part of a provider's extra fields
    BASE_FIELDS = frozenset({"username", "password"})


class PrometeoConstants:
    """Wire contract of the Prometeo banking API."""

    # Session keys issued by the reference provider are 32 characters long
    SESSION_KEY_LENGTH = 32

    # Login statuses
    STATUS_LOGGED_IN = "logged_in"
    STATUS_SELECT_CLIENT = "select_client"
    STATUS_INTERACTION_REQUIRED = "interaction_required"
    STATUS_WRONG_CREDENTIALS = "wrong_credentials"
    STATUS_LOGGED_OUT = "logged_out"
    STATUS_SUCCESS = "success"
    STATUS_ERROR = "error"

    # Statuses a non-2xx response may carry; any other one is a failure
    FAILURE_STATUSES = frozenset({STATUS_ERROR, STATUS_WRONG_CREDENTIALS})

    # Interaction fields
    FIELD_OTP = "otp"
    FIELD_PERSONAL_QUESTIONS = "personal_questions"

    # Error messages
    MESSAGE_INVALID_KEY = "Invalid key"
    MESSAGE_UNAUTHORIZED_PROVIDER = "Unauthorized provider"
    MESSAGE_MISSING_API_KEY = "Missing API key"
    MESSAGE_API_KEY_NOT_FOUND = "Key not Found"
    MESSAGE_WRONG_CLIENT = "wrong_client"

    # The only status code that is retried
    RETRYABLE_STATUS_CODE = 502

    # Selecting a client is slower upstream, so it backs off from 200ms
    SELECT_CLIENT_INITIAL_BACKOFF_MS = 200

    # Provider catalog filters
    CORPORATE_CODE_MARKERS = ("corp", "bcp", "smes")
    PROVIDERS_CACHE_KEY = "prometeo-providers"


class MovementQueryConstants:
    """Formats accepted when querying account movements."""

    DATE_FORMAT = "%d/%m/%Y"
    DATE_FORMAT_LABEL = "dd/mm/yyyy"
    CURRENCY_PATTERN = r"^[A-Z]{3}$"
