import json
import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

load_dotenv()  # loads .env for local dev


def _stage_ids_from_env() -> dict[str, str]:
    raw = os.getenv("GHL_STAGE_IDS", "").strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(k): str(v) for k, v in parsed.items()}


@dataclass(frozen=True)
class Settings:
    env: str = os.getenv("ENV", "local")
    service_name: str = os.getenv("SERVICE_NAME", "dealflow-api")
    database_url: str = os.getenv("DATABASE_URL", "")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Pipeline board
    stale_threshold_days: int = int(os.getenv("STALE_THRESHOLD_DAYS", "7"))
    write_backend: str = os.getenv("WRITE_BACKEND", "postgres")

    # GoHighLevel sync
    ghl_base_url: str = os.getenv("GHL_BASE_URL", "https://services.leadconnectorhq.com")
    ghl_access_token: str = os.getenv("GHL_ACCESS_TOKEN", "")
    ghl_location_id: str = os.getenv("GHL_LOCATION_ID", "")
    ghl_pipeline_id: str = os.getenv("GHL_PIPELINE_ID", "")
    ghl_api_version: str = os.getenv("GHL_API_VERSION", "2021-07-28")
    ghl_stage_ids: dict[str, str] = field(default_factory=_stage_ids_from_env)
    http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))

settings = Settings()
