from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///whatsapp.db"
    CONTACTS_JSON_PATH: str = "contacts.json"
    GROUPS_JSON_PATH: str = "groups.json"
    GROUP_SEND_RETRY_DELAY: float = 2.0
    # Seconds after the connection opens before the live contact names are copied to the DB.
    CONTACT_SYNC_DELAY: float = 3.0
    # Optional "package.module:factory"; called as factory(ingestor, link) at server start.
    WA_TRANSPORT: str = ""
    MCP_PORT: int = 8002
    LOG_LEVEL: str = "INFO"
    # Create missing tables at server start. Turn off when the schema is managed with `main.py migrate`.
    AUTO_CREATE_SCHEMA: bool = True

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
