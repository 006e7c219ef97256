"""Application configuration."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    wiki_root: Path = Path("./mdwiki")
    source_dir: str = "src"
    index_filename: str = "README.md"
    page_extension: str = ".md"
    assets_dir: str = "images"
    max_depth: int = 4

    # username -> pbkdf2 hash, e.g. MDWIKI_USERS='{"alice": "pbkdf2_sha256$..."}'
    users: dict[str, str] = {}
    users_file: Path | None = None
    session_ttl: int = 60 * 60 * 24
    session_cookie: str = "mdwiki_session"
    cookie_secure: bool = False

    max_upload_bytes: int = 8 * 1024 * 1024

    system_user: str = "mdwiki"
    commit_email: str = "mdwiki@example.com"
    git_timeout: float = 10.0
    lock_timeout: float = 10.0
    manage_summary: bool = True
    ignore_assets: bool = True

    home_url: str = "/"
    app_title: str = "mdwiki"
    debug: bool = False

    model_config = SettingsConfigDict(
        env_prefix="MDWIKI_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def source_path(self) -> Path:
        """Directory holding the Markdown sources."""
        return self.wiki_root / self.source_dir

    @property
    def assets_path(self) -> Path:
        """Directory holding uploaded assets."""
        return self.source_path / self.assets_dir


settings = Settings()
