import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


def _speed_choices(raw: str) -> Tuple[float, ...]:
    choices = tuple(float(part) for part in raw.split(",") if part.strip())
    if not choices or any(c <= 0 for c in choices):
        raise ValueError(f"TRACKER_SPEED_CHOICES must be positive numbers, got {raw!r}")
    return choices


@dataclass
class Settings:
    flask_host: str = "127.0.0.1"
    flask_port: int = 8888
    base_interval_ms: int = 2000
    speed_choices: Tuple[float, ...] = (1.0, 2.0, 4.0, 8.0)
    osrm_url: str = "https://router.project-osrm.org"
    osrm_profile: str = "driving"
    google_maps_api_key: Optional[str] = None
    request_timeout: float = 20.0
    log_level: str = "INFO"
    postgres: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            flask_host=env.get("FLASK_HOST", "127.0.0.1"),
            flask_port=int(env.get("FLASK_PORT", "8888")),
            base_interval_ms=int(env.get("TRACKER_BASE_INTERVAL_MS", "2000")),
            speed_choices=_speed_choices(env.get("TRACKER_SPEED_CHOICES", "1,2,4,8")),
            osrm_url=env.get("OSRM_URL", "https://router.project-osrm.org"),
            osrm_profile=env.get("OSRM_PROFILE", "driving"),
            google_maps_api_key=env.get("GOOGLE_MAPS_API_KEY") or None,
            request_timeout=float(env.get("TRACKER_REQUEST_TIMEOUT", "20")),
            log_level=env.get("TRACKER_LOG_LEVEL", "INFO").upper(),
            postgres={
                "host": env.get("PGHOST", "localhost"),
                "port": env.get("PGPORT", "5432"),
                "dbname": env.get("PGDB", "tracker"),
                "user": env.get("PGUSER", "postgres"),
                "password": env.get("PGPASSWORD", "postgres"),
            },
        )
