import os
import shlex
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator


def _parse_user_ids(raw: str | None) -> set[int]:
    ids: set[int] = set()
    if not raw:
        return ids
    for part in raw.replace(";", ",").split(","):
        p = part.strip()
        if not p:
            continue
        try:
            ids.add(int(p))
        except ValueError:
            continue
    return ids


def _split_cmd(raw: str | None, default: str) -> tuple[str, ...]:
    return tuple(shlex.split((raw or "").strip() or default))


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    # Empty means the bot is open to everyone
    allowed_user_ids: frozenset[int] = frozenset()
    # Overlay repository
    overlay_repo_path: Path | None = None
    overlay_dir: str = "PixelLauncherIconsOverlay"
    integration_branch: str = "12.1"
    git_remote: str = "origin"
    committer_name: str = "Leonardo"
    committer_email: str = "leonardo@users.noreply.gitlab.com"
    index_header_lines: int = 2
    # GitLab
    gitlab_token: str | None = None
    gitlab_api_url: str = "https://gitlab.com/api/v4"
    gitlab_project_id: int = 35606329
    # Converters
    potrace_cmd: tuple[str, ...] = ("potrace", "--svg")
    svg2vd_cmd: tuple[str, ...] = ("svg2vd", "-i", "-", "-o", "-")
    converter_timeout_sec: float = 60
    git_timeout_sec: float = 120
    http_timeout_sec: float = 20
    max_upload_bytes: int = 10 * 1024 * 1024
    # Logging
    log_file: Path | None = None
    log_level: str = "INFO"
    log_max_bytes: int = 5 * 1024 * 1024
    log_backups: int = 5

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return (v or "INFO").upper()

    @field_validator("overlay_repo_path", "log_file", mode="before")
    @classmethod
    def _ensure_path(cls, v: str | Path | None) -> Path | None:
        if not v:
            return None
        return Path(v).expanduser().resolve()

    @field_validator("gitlab_token", mode="before")
    @classmethod
    def _blank_token(cls, v: str | None) -> str | None:
        v = (v or "").strip()
        return v or None

    @field_validator("gitlab_api_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("index_header_lines")
    @classmethod
    def _positive_header(cls, v: int) -> int:
        if v < 1:
            raise ValueError("index_header_lines must be at least 1")
        return v

    @property
    def drawable_dir(self) -> Path:
        """Drawable directory relative to the repository root."""
        return Path(self.overlay_dir) / "res" / "drawable"

    @property
    def index_file(self) -> Path:
        """Index file relative to the repository root."""
        return Path(self.overlay_dir) / "res" / "xml" / "grayscale_icon_map.xml"


def load_settings() -> Settings:
    token = os.getenv("BOT_TOKEN", "").strip()
    if not token:
        raise RuntimeError("BOT_TOKEN is not set. Define it in environment or .env file.")

    allowed = _parse_user_ids(os.getenv("ALLOWED_USER_IDS"))

    # Overlay repository; checked when a publish is attempted, not here
    repo_raw = os.getenv("PATH_TO_ICONS_OVERLAY", "").strip()

    # Logging
    log_file_raw = os.getenv("LOG_FILE", "").strip()
    log_level = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
    log_max_bytes = int(os.getenv("LOG_MAX_BYTES", str(5 * 1024 * 1024)))
    log_backups = int(os.getenv("LOG_BACKUPS", "5"))

    return Settings(
        token=token,
        allowed_user_ids=frozenset(allowed),
        overlay_repo_path=repo_raw or None,
        overlay_dir=os.getenv("OVERLAY_DIR", "").strip() or "PixelLauncherIconsOverlay",
        integration_branch=os.getenv("INTEGRATION_BRANCH", "").strip() or "12.1",
        git_remote=os.getenv("GIT_REMOTE", "").strip() or "origin",
        committer_name=os.getenv("COMMITTER_NAME", "").strip() or "Leonardo",
        committer_email=os.getenv("COMMITTER_EMAIL", "").strip()
        or "leonardo@users.noreply.gitlab.com",
        index_header_lines=int(os.getenv("INDEX_HEADER_LINES", "2") or 2),
        gitlab_token=os.getenv("GITLAB_TOKEN"),
        gitlab_api_url=os.getenv("GITLAB_API_URL", "").strip() or "https://gitlab.com/api/v4",
        gitlab_project_id=int(os.getenv("GITLAB_PROJECT_ID", "35606329") or 35606329),
        potrace_cmd=_split_cmd(os.getenv("POTRACE_CMD"), "potrace --svg"),
        svg2vd_cmd=_split_cmd(os.getenv("SVG2VD_CMD"), "svg2vd -i - -o -"),
        converter_timeout_sec=float(os.getenv("CONVERTER_TIMEOUT_SEC", "60") or 60),
        git_timeout_sec=float(os.getenv("GIT_TIMEOUT_SEC", "120") or 120),
        http_timeout_sec=float(os.getenv("HTTP_TIMEOUT_SEC", "20") or 20),
        max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024))),
        log_file=log_file_raw or None,
        log_level=log_level,
        log_max_bytes=log_max_bytes,
        log_backups=log_backups,
    )
