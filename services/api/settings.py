# services/api/settings.py
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field
import base64
from typing import List, Optional
from pathlib import Path

class Settings(BaseSettings):
    # Database settings
    storage_backend: str = "sqlite"
    db_url: str = "sqlite:///data/drawing_split.db"

    # Blob storage for originals and extracted pages
    # local = plain directory tree, drive = Google Drive folder tree
    blob_backend: str = "local"
    blob_root_dir: str = "data/blobs"
    gdrive_root_folder_name: str = "Drawing_Split"
    # Optional: if you create the root folder manually & share it, put its ID here
    gdrive_root_folder_id: str = ""

    # Google service account (Vision)
    google_sa_json: str = ""
    google_sa_json_base64: str = ""

    # ---- Page metadata inference ----
    # vision = Google Cloud Vision text detection, none = manual entry only
    inference_backend: str = "vision"
    vision_timeout_seconds: float = 30.0
    # Rough DPI = 72 * scale
    vision_render_scale: float = 2.0
    # Max concurrent inference calls per upload
    inference_concurrency: int = 3

    # ---- Split limits ----
    # Pages above this ceiling are dropped from the draft (not rejected)
    split_max_pages: int = 100
    split_max_file_mb: int = 50

    # Comma-separated roles that may read/cancel drafts they did not upload
    elevated_roles: str = "ADMIN,PROJECT_MANAGER"

    # CORS settings
    allowed_origins: str = "http://localhost:3000,http://localhost:8000"

    # Email settings (split notifications)
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = ""
    smtp_from_name: str = "Drawing Split Service"

    # Used to build absolute links in notification e-mails
    app_base_url: Optional[str] = Field(
        default=None,
        description="Dashboard base URL, e.g. https://app.example.com",
    )

    model_config = ConfigDict(
        # Always load .env from the same folder as this settings.py
        env_file=str(Path(__file__).resolve().parent / ".env"),
        extra="ignore",
    )


    def resolved_google_sa_json(self) -> str:
        """
        Return the path to the service account JSON.
        If GOOGLE_SA_JSON_BASE64 is set, decode it to a temp file.
        Otherwise return GOOGLE_SA_JSON path.
        """
        if self.google_sa_json_base64:
            import tempfile

            decoded = base64.b64decode(self.google_sa_json_base64)
            temp_file = tempfile.NamedTemporaryFile(mode='w', delete=False, suffix='.json')
            temp_file.write(decoded.decode('utf-8'))
            temp_file.close()
            return temp_file.name

        return self.google_sa_json

    def get_origins_list(self) -> List[str]:
        """Parse comma-separated origins into a list."""
        if not self.allowed_origins:
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    def get_elevated_roles(self) -> List[str]:
        return [r.strip().upper() for r in self.elevated_roles.split(",") if r.strip()]

    @property
    def split_max_file_bytes(self) -> int:
        return self.split_max_file_mb * 1024 * 1024


_settings_instance = None

def get_settings() -> Settings:
    """Singleton pattern for settings."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
