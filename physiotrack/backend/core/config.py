from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "PhysioTrack"
    env: str = "dev"
    api_prefix: str = "/api"

    # "sql" persists documents through SQLAlchemy, "memory" keeps them in-process.
    store_backend: str = "sql"
    database_url: str = "sqlite:///./physiotrack.db"
    # Reject ordered queries that would need a composite index (hosted-backend behaviour).
    store_enforce_indexes: bool = False

    jwt_secret: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 30

    frontend_origin: str = "http://localhost:5173"

    webhook_url: str = "https://hackgroup.app.n8n.cloud/webhook/patient-query"
    webhook_test_url: str = "https://hackgroup.app.n8n.cloud/webhook-test/patient-query"
    webhook_source: str = "arduino_knee_monitor"
    webhook_timeout_sec: float | None = None
    # Threads reserved for webhook calls, separate from the default executor.
    webhook_max_workers: int = 4

    serial_baud_rate: int = 9600

    rolling_average_window: int = 10
    recommendation_history_size: int = 20

    log_level: str = "INFO"
    log_file: str | None = None


settings = Settings()
