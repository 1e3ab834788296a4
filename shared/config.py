"""
CRM Vector Sync configuration
All settings come from the environment with sensible local defaults
"""

import os


def _env_bool(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str = "") -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# Feature switch for the whole vector subsystem
VECTOR_ENABLED = _env_bool("VECTOR_ENABLED", "true")

# Voyage AI embeddings
VOYAGE_API_KEY = os.getenv("VOYAGE_API_KEY", "")
VOYAGE_URL = os.getenv("VOYAGE_URL", "https://api.voyageai.com/v1")
EMBED_MODEL = os.getenv("EMBED_MODEL", "voyage-3-lite")
EMBED_DIMENSIONS = int(os.getenv("EMBED_DIMENSIONS", "512"))
EMBED_BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "128"))
MAX_DESCRIPTION_WORDS = int(os.getenv("EMBED_MAX_WORDS", "2000"))

# Qdrant
QDRANT_URL = os.getenv("QDRANT_URL", "")
QDRANT_HOST = os.getenv("QDRANT_HOST", "localhost")
QDRANT_PORT = int(os.getenv("QDRANT_PORT", "6333"))
QDRANT_API_KEY = os.getenv("QDRANT_API_KEY", "") or None
QDRANT_COLLECTION = os.getenv("QDRANT_COLLECTION", "crm_leads")
HNSW_M = int(os.getenv("QDRANT_HNSW_M", "16"))
HNSW_EF_CONSTRUCT = int(os.getenv("QDRANT_HNSW_EF_CONSTRUCT", "100"))

# Odoo CRM
ODOO_URL = os.getenv("ODOO_URL", "http://localhost:8069")
ODOO_DB = os.getenv("ODOO_DB", "odoo")
ODOO_USERNAME = os.getenv("ODOO_USERNAME", "admin")
ODOO_PASSWORD = os.getenv("ODOO_PASSWORD", "")
ODOO_MAX_RETRIES = int(os.getenv("ODOO_MAX_RETRIES", "2"))
ODOO_RETRY_BACKOFF = float(os.getenv("ODOO_RETRY_BACKOFF", "0.5"))

# Custom crm.lead fields present on this Odoo instance (comma separated).
# Set CRM_EXTRA_FIELDS="" on a stock Odoo database.
CRM_EXTRA_FIELDS = _env_list(
    "CRM_EXTRA_FIELDS",
    "sector,lead_source_id,specification_id,won_status,project_address,address_note,"
    "design,quote,x_studio_building_owner,architect_id,client_id,estimator_id,"
    "project_manager_id,spec_rep_id",
)

# Sync batching
SYNC_FETCH_BATCH_SIZE = int(os.getenv("SYNC_FETCH_BATCH_SIZE", "200"))
SYNC_UPSERT_BATCH_SIZE = int(os.getenv("SYNC_UPSERT_BATCH_SIZE", "100"))

# Timeouts (seconds)
HEALTH_CHECK_TIMEOUT = float(os.getenv("HEALTH_CHECK_TIMEOUT", "5"))
API_TIMEOUT = float(os.getenv("API_TIMEOUT", "30"))
LARGE_OPERATION_TIMEOUT = float(os.getenv("LARGE_OPERATION_TIMEOUT", "60"))

# Circuit breakers
VECTOR_BREAKER_THRESHOLD = int(os.getenv("VECTOR_BREAKER_THRESHOLD", "3"))
VECTOR_BREAKER_RESET_SECONDS = float(os.getenv("VECTOR_BREAKER_RESET_SECONDS", "30"))
CRM_BREAKER_THRESHOLD = int(os.getenv("CRM_BREAKER_THRESHOLD", "5"))
CRM_BREAKER_RESET_SECONDS = float(os.getenv("CRM_BREAKER_RESET_SECONDS", "60"))
BREAKER_HALF_OPEN_CALLS = int(os.getenv("BREAKER_HALF_OPEN_CALLS", "1"))

# Similarity floors
DEFAULT_MIN_SIMILARITY = float(os.getenv("DEFAULT_MIN_SIMILARITY", "0.6"))
LOOSE_MIN_SIMILARITY = float(os.getenv("LOOSE_MIN_SIMILARITY", "0.5"))

# Clustering
CLUSTER_SCROLL_LIMIT = int(os.getenv("CLUSTER_SCROLL_LIMIT", "1000"))
CLUSTER_MAX_ITERATIONS = int(os.getenv("CLUSTER_MAX_ITERATIONS", "100"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = _env_bool("LOG_JSON", "false")
