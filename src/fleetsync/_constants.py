"""Internal constants shared across the library."""

USER_AGENT = "fleetsync/0.4"
STORAGE_PREFIX = "waste_mgmt_"

# ------------------------------------------------------------------
# Wire paths (relative to SyncConfig.base_url)
# ------------------------------------------------------------------

SYNC_PATH = "/sync"
HEALTH_PATH = "/health"
INFO_PATH = "/info"
ROUTES_PATH = "/routes"
COLLECTIONS_PATH = "/collections"
DRIVER_LOCATIONS_PATH = "/driver/locations"


def driver_path(driver_id: str, action: str | None = None) -> str:
    """Build a per-driver endpoint path such as ``/driver/USR-001/fuel``."""
    base = f"/driver/{driver_id}"
    return f"{base}/{action}" if action else base


# ------------------------------------------------------------------
# Connection health thresholds (seconds of pull round trip)
# ------------------------------------------------------------------

HEALTH_EXCELLENT_BELOW_S = 1.0
HEALTH_GOOD_BELOW_S = 3.0

# ------------------------------------------------------------------
# Bin status thresholds
# ------------------------------------------------------------------

BIN_CRITICAL_FILL = 85
BIN_WARNING_FILL = 70
BIN_FIRE_RISK_TEMPERATURE = 60

EARTH_RADIUS_KM = 6371.0
DRIVER_HISTORY_LIMIT = 100
