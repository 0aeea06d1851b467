from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: str = ""

    # Server
    base_url: str = "http://localhost:8000"

    # Dashboard CORS origins (comma-separated)
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Statement snapshots older than this are recomputed on read
    statement_cache_ttl_seconds: int = 300

    # PostgREST caps responses at 1000 rows by default
    db_page_size: int = 1000

    # Session tokens issued by /auth/login
    auth_session_hours: int = 24

    # GET /dre/statement without period params falls back to the current month (BRT)
    default_to_current_month: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
