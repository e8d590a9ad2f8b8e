from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./table_importer.db"
    log_level: str = "INFO"
    log_file: str = ""  # Also write errors and SQL to this file when set
    sql_log_enabled: bool = True  # Log every executed statement on "table_importer.sql"

    # Input file defaults (used when a request does not specify them)
    input_separator: str = "tab"  # Options: "tab", "comma", "semicolon", "pipe"
    input_locale: str = "en"  # Decimal format used for number ranges
    trim_cells: bool = True  # Strip surrounding whitespace from every field
    preview_rows: int = 20

    # Undo
    undo_chunk_size: int = 1000  # Ids per DELETE ... IN (...) statement

    # API job bookkeeping
    job_retention_seconds: int = 3600

    model_config = ConfigDict(env_file=".env", extra="ignore")


settings = Settings()
