from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ADMIN_API_KEY = "fe-admin-dev-key"
DEFAULT_CLERK_API_KEY = "fe-clerk-dev-key"
DEFAULT_CHECKER_API_KEY = "fe-checker-dev-key"
DEFAULT_DISPATCHER_API_KEY = "fe-dispatcher-dev-key"
DEFAULT_SYSTEM_API_KEY = "fe-system-dev-key"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="FE_", extra="ignore")

    app_name: str = "Fulfillment & Dispatch Engine"
    env: str = "dev"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    database_url: str = "sqlite+pysqlite:///./fulfillment.db"

    bootstrap_demo_on_startup: bool = False

    main_location_id: str = Field(
        default="main-warehouse",
        description="Distinguished stock location loads leave from by default",
    )
    currency: str = "LKR"

    # Entering a load always advances to Loading; this decides whether the
    # orders also go straight to In Transit.
    dispatch_advance_to_in_transit: bool = True

    order_number_prefix: str = "ORD"
    invoice_number_prefix: str = "INV"
    load_number_prefix: str = "LOAD"
    document_number_offset: int = 1001

    history_page_size: int = Field(default=100, ge=1, le=1000)

    auth_enabled: bool = True
    admin_api_key: str = DEFAULT_ADMIN_API_KEY
    clerk_api_key: str = DEFAULT_CLERK_API_KEY
    checker_api_key: str = DEFAULT_CHECKER_API_KEY
    dispatcher_api_key: str = DEFAULT_DISPATCHER_API_KEY
    system_api_key: str = DEFAULT_SYSTEM_API_KEY
    admin_actor_id: str = "admin-001"
    clerk_actor_id: str = "clerk-001"
    checker_actor_id: str = "checker-001"
    dispatcher_actor_id: str = "dispatcher-001"
    system_actor_id: str = "system-001"

    def model_post_init(self, __context) -> None:
        if self.env.lower() == "dev":
            return

        insecure_items: list[str] = []
        if self.admin_api_key == DEFAULT_ADMIN_API_KEY:
            insecure_items.append("FE_ADMIN_API_KEY")
        if self.clerk_api_key == DEFAULT_CLERK_API_KEY:
            insecure_items.append("FE_CLERK_API_KEY")
        if self.checker_api_key == DEFAULT_CHECKER_API_KEY:
            insecure_items.append("FE_CHECKER_API_KEY")
        if self.dispatcher_api_key == DEFAULT_DISPATCHER_API_KEY:
            insecure_items.append("FE_DISPATCHER_API_KEY")
        if self.system_api_key == DEFAULT_SYSTEM_API_KEY:
            insecure_items.append("FE_SYSTEM_API_KEY")

        if insecure_items:
            raise ValueError(
                "insecure default api keys are not allowed outside dev mode; set env vars: "
                + ", ".join(sorted(insecure_items))
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
