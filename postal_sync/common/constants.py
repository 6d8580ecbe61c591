"""Application constants."""

USER_AGENT = "postal-sync/0.3 (+ken-all mirror)"
KEN_ALL_URL = "https://www.post.japanpost.jp/zipcode/dl/kogaki/zip/ken_all.zip"
KEN_ALL_ENCODING = "cp932"
KEN_ALL_MIN_COLUMNS = 15

RECORD_KEY_ATTRIBUTE = "postal_code"
HASH_KEY_ATTRIBUTE = "id"
SNAPSHOT_HASH_ID = "#hash#"

DYNAMODB_MAX_BATCH_WRITE = 25
DYNAMODB_MAX_BATCH_GET = 100

ADDRESS_FIELDS = (
    "city",
    "city_kana",
    "prefecture",
    "prefecture_kana",
    "town",
    "town_kana",
)
REQUIRED_FIELDS = ("prefecture", "city")
# Fields cleared together when consolidating rows that share a postal code.
FIELD_PAIRS = (
    ("town", "town_kana"),
    ("city", "city_kana"),
    ("prefecture", "prefecture_kana"),
)

MAX_FAILURE_SAMPLES = 50

EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "event",
    "status",
    "attempt",
    "duration_ms",
    "rows_in",
    "rows_out",
    "error_code",
    "message",
)
