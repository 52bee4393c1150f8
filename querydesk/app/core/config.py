from typing import Optional

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "QueryDesk"

    # System database holding data sources, schema cache and execution history.
    # DATABASE_URL wins when set; otherwise MySQL parts, otherwise a local SQLite file.
    DATABASE_URL: Optional[str] = None
    MYSQL_HOST: str = ""
    MYSQL_PORT: int = 3306
    MYSQL_USER: str = ""
    MYSQL_PASSWORD: str = ""
    MYSQL_DB: str = "querydesk"

    SQL_ECHO: bool = False
    LOG_LEVEL: str = "INFO"

    # Connection prober
    PROBE_TIMEOUT_SECONDS: int = 10

    # Schema cache
    SCHEMA_CACHE_TTL_SECONDS: int = 3600
    SCHEMA_INCLUDE_VIEWS: bool = False

    # Query executor
    DEFAULT_QUERY_LIMIT: int = 1000
    DEFAULT_QUERY_TIMEOUT_SECONDS: int = 30
    # Splice parameter values into the SQL text instead of binding them
    INLINE_PARAMETERS: bool = False

    # SQL Server is reached through ODBC; the driver name must match the host install
    MSSQL_ODBC_DRIVER: str = "ODBC Driver 18 for SQL Server"

    def get_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.MYSQL_HOST and self.MYSQL_USER:
            return f"mysql+pymysql://{self.MYSQL_USER}:{self.MYSQL_PASSWORD}@{self.MYSQL_HOST}:{self.MYSQL_PORT}/{self.MYSQL_DB}"
        return "sqlite:///querydesk.db"

    class Config:
        env_file = ".env"
        extra = "ignore" # Ignore extra fields in .env

settings = Settings()
