from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://donations:donations_secret@db:5432/donations_db"
    AUTO_CREATE_TABLES: bool = True
    JWT_SECRET: str = "donations-jwt-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 480
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # Campaign attachments
    ATTACHMENT_MAX_BYTES: int = 5 * 1024 * 1024
    ATTACHMENT_MAX_FILES: int = 5
    ATTACHMENT_ALLOWED_EXTENSIONS: list[str] = [
        "jpeg", "jpg", "png", "gif", "pdf", "doc", "docx", "xls", "xlsx",
    ]

    CURRENCY: str = "EGP"

    class Config:
        env_file = ".env"


settings = Settings()
