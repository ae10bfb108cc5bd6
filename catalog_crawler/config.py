"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Durable files
    structure_file: str = "metro_full_structure.json"
    output_file: str = "metro_products.json"
    done_file: str = "scraped_urls.json"

    # Record store backend: "json" (output_file) or "sql" (database_url)
    store_backend: str = "json"
    database_url: str = "sqlite:///catalog.db"

    # App Settings
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"
    app_host: str = "0.0.0.0"
    app_port: int = 8001

    # ==========================================================================
    # Task Graph
    # ==========================================================================
    include_category_page: bool = True  # Also crawl the category's own page as "General"
    generic_subcategory: str = "General"

    # ==========================================================================
    # Crawl Settings
    # ==========================================================================
    save_interval: int = 20  # Merge every N newly loaded items
    min_products: int = 40  # Stop early once this many items are loaded and nothing changes
    browser_restart_every: int = 5  # Relaunch the browser after N processed tasks

    # Navigation (0 = no timeout, for long unattended runs)
    navigation_timeout_ms: int = 0
    navigation_wait_until: str = "networkidle"

    # Fixed in-page waits
    settle_delay_seconds: float = 5.0
    scroll_delay_seconds: float = 3.0
    click_delay_seconds: float = 5.0

    # Pagination budgets
    stuck_threshold: int = 3
    no_change_threshold: int = 3
    max_pagination_cycles: int = 1000

    # Extraction: "strict" requires a price, "lenient" accepts name + link
    extraction_mode: str = "lenient"

    # ==========================================================================
    # Browser
    # ==========================================================================
    headless: bool = True
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    viewport_width: int = 1366
    viewport_height: int = 768
    browser_args: list[str] = ["--no-sandbox", "--disable-setuid-sandbox"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
