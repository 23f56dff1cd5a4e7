from pathlib import Path

from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    app_name: str = "Campus Messaging"
    debug: bool = False

    # Paths
    data_dir: Path = BASE_DIR / "data"
    database_url: str = f"sqlite:///{BASE_DIR / 'messaging.db'}"

    # Conversations
    default_group_topic: str = "Group Chat"

    # Typing indicator: sender stops after this much silence, server expires too
    typing_timeout_seconds: float = 3.0

    # Uploads (voice notes and images)
    upload_max_bytes: int = 10 * 1024 * 1024
    upload_extensions: list[str] = [".png", ".jpg", ".jpeg", ".gif", ".webp", ".mp3", ".ogg", ".webm", ".m4a", ".wav"]

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(BASE_DIR / ".env"),
        "env_prefix": "MESSAGING_",
    }


settings = Settings()
