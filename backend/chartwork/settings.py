from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # --- Mongo ---
    MONGODB_URI: str = "mongodb://mongo:27017"
    MONGODB_DB: str = "chartwork"

    # --- Auth mode (POC) ---
    AUTH_MODE: str = "dev"   # dev only for now

    # --- Web origin (CORS) ---
    WEB_ORIGIN: str = "http://localhost:3000"

    # Optional LLM used to classify plan files
    LLM_BASE_URL: str | None = None
    LLM_API_KEY: str | None = None
    LLM_MODEL: str | None = None
    PLAN_CLASSIFY_TIMEOUT_SEC: float = 20.0

    # --- Plan execution ---
    PLAN_MAX_TOOL_STEPS: int = 50
    STR_REPLACE_FUZZY_MIN_CHARS: int = 50
    STR_REPLACE_CONTEXT_CHARS: int = 100

    # local | remote
    MUTATION_BACKEND: str = "local"
    MUTATION_BACKEND_URL: str = "http://localhost:8080"
    MUTATION_BACKEND_USER: str = "plan-executor@local"
    REMOTE_HTTP_RETRIES: int = 2

    # --- Realtime (Centrifugo) ---
    CENTRIFUGO_API_URL: str = "http://localhost:8000/api"
    CENTRIFUGO_API_KEY: str | None = None
    REALTIME_REPLAY_TTL_SEC: int = 10

    APP_VERSION: str = "dev"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
