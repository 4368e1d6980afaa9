from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    bvg_base_url: str = "https://v6.bvg.transport.rest"
    operator_names: str = "Berliner Verkehrsbetriebe,S-Bahn Berlin GmbH"
    http_timeout_seconds: float = 30.0

    # Detail requests: one every 600 ms keeps us under the upstream rate limit
    request_interval_ms: int = 600
    burst_interval_ms: int = 300
    burst_duration_ms: int = 60_000
    backoff_duration_ms: int = 10_000

    trips_refresh_seconds: int = 90
    reprioritize_seconds: int = 10
    retire_interval_seconds: int = 15
    finished_grace_seconds: float = 15.0

    # Planar projection origin (Alexanderplatz)
    origin_lat: float = 52.519170
    origin_lon: float = 13.409606

    model_config = {"env_prefix": "", "case_sensitive": False}


settings = Settings()
