"""Config management for Unfold.

Reads `config.ini` from DATA_DIR (the project root unless overridden).
When running as PyInstaller onefile, PROJECT_ROOT is the directory containing the executable.
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
import sys
from typing import Optional


def _get_project_root() -> pathlib.Path:
    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(__file__).resolve().parents[1]


PROJECT_ROOT = _get_project_root()

# DATA_DIR holds all persistent state (config.ini, unfold.db, thumbnails/).
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"

DEFAULT_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif")
DEFAULT_VIDEO_EXTENSIONS = (".mp4", ".webm", ".mov")
DEFAULT_IGNORE_PATTERNS = (".DS_Store", "Thumbs.db", "@eaDir")


@dataclasses.dataclass
class LibraryConfig:
    path: pathlib.Path
    # User that CLI runs grant new sources to, and the HTTP default when no X-User-Id is sent
    default_user: str = "local"


@dataclasses.dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3001


@dataclasses.dataclass
class ThumbnailConfig:
    width: int = 400
    height: int = 400
    quality: int = 80
    format: str = "webp"
    batch_limit: int = 100
    workers: int = 4
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    timeout: int = 20
    directory: Optional[pathlib.Path] = None


@dataclasses.dataclass
class ScannerConfig:
    image_extensions: tuple[str, ...] = DEFAULT_IMAGE_EXTENSIONS
    video_extensions: tuple[str, ...] = DEFAULT_VIDEO_EXTENSIONS
    ignore_patterns: tuple[str, ...] = DEFAULT_IGNORE_PATTERNS


@dataclasses.dataclass
class MonitoringConfig:
    enabled: bool = True
    debounce_seconds: float = 3.0
    max_errors: int = 5


@dataclasses.dataclass
class FeedConfig:
    page_size: int = 20
    max_page_size: int = 100
    noise: float = 100.0
    recency_days: float = 50.0


@dataclasses.dataclass
class IntegrityConfig:
    interval_minutes: int = 0


@dataclasses.dataclass
class UnfoldConfig:
    library: LibraryConfig
    server: ServerConfig = dataclasses.field(default_factory=ServerConfig)
    thumbnails: ThumbnailConfig = dataclasses.field(default_factory=ThumbnailConfig)
    scanner: ScannerConfig = dataclasses.field(default_factory=ScannerConfig)
    monitoring: MonitoringConfig = dataclasses.field(default_factory=MonitoringConfig)
    feed: FeedConfig = dataclasses.field(default_factory=FeedConfig)
    integrity: IntegrityConfig = dataclasses.field(default_factory=IntegrityConfig)

    @property
    def library_path(self) -> pathlib.Path:
        return self.library.path

    @property
    def server_host(self) -> str:
        return self.server.host

    @property
    def server_port(self) -> int:
        return self.server.port

    @property
    def thumbnails_dir(self) -> pathlib.Path:
        return self.thumbnails.directory or DATA_DIR / "thumbnails"


def _parse_bool(value: str, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_extensions(value: str) -> tuple[str, ...]:
    """Normalize `jpg, .PNG` style lists to lowercase dotted suffixes."""
    return tuple(
        ext.lower() if ext.startswith(".") else f".{ext.lower()}"
        for ext in _parse_list(value)
    )


def load_config(config_path: Optional[pathlib.Path] = None) -> UnfoldConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    lib_path = pathlib.Path(
        parser.get("library", "path", fallback="/path/to/media")
    ).expanduser()

    server = ServerConfig(
        host=parser.get("server", "host", fallback="0.0.0.0"),
        port=parser.getint("server", "port", fallback=3001),
    )

    thumbs_dir = parser.get("thumbnails", "directory", fallback="").strip()
    thumbs = ThumbnailConfig(
        width=parser.getint("thumbnails", "width", fallback=400),
        height=parser.getint("thumbnails", "height", fallback=400),
        quality=parser.getint("thumbnails", "quality", fallback=80),
        format=parser.get("thumbnails", "format", fallback="webp").strip().lower(),
        batch_limit=parser.getint("thumbnails", "batch_limit", fallback=100),
        workers=parser.getint("thumbnails", "workers", fallback=4),
        ffmpeg=parser.get("thumbnails", "ffmpeg", fallback="ffmpeg"),
        ffprobe=parser.get("thumbnails", "ffprobe", fallback="ffprobe"),
        timeout=parser.getint("thumbnails", "timeout", fallback=20),
        directory=pathlib.Path(thumbs_dir).expanduser() if thumbs_dir else None,
    )

    scanner = ScannerConfig(
        image_extensions=_parse_extensions(
            parser.get(
                "scanner",
                "image_extensions",
                fallback=",".join(DEFAULT_IMAGE_EXTENSIONS),
            )
        ),
        video_extensions=_parse_extensions(
            parser.get(
                "scanner",
                "video_extensions",
                fallback=",".join(DEFAULT_VIDEO_EXTENSIONS),
            )
        ),
        ignore_patterns=_parse_list(
            parser.get(
                "scanner",
                "ignore_patterns",
                fallback=",".join(DEFAULT_IGNORE_PATTERNS),
            )
        ),
    )

    monitoring = MonitoringConfig(
        enabled=_parse_bool(
            parser.get("monitoring", "enabled", fallback="true"), True
        ),
        debounce_seconds=parser.getfloat(
            "monitoring", "debounce_seconds", fallback=3.0
        ),
        max_errors=parser.getint("monitoring", "max_errors", fallback=5),
    )

    feed = FeedConfig(
        page_size=parser.getint("feed", "page_size", fallback=20),
        max_page_size=parser.getint("feed", "max_page_size", fallback=100),
        noise=parser.getfloat("feed", "noise", fallback=100.0),
        recency_days=parser.getfloat("feed", "recency_days", fallback=50.0),
    )

    integrity = IntegrityConfig(
        interval_minutes=parser.getint("integrity", "interval_minutes", fallback=0),
    )

    return UnfoldConfig(
        library=LibraryConfig(
            path=lib_path,
            default_user=parser.get("library", "default_user", fallback="local").strip(),
        ),
        server=server,
        thumbnails=thumbs,
        scanner=scanner,
        monitoring=monitoring,
        feed=feed,
        integrity=integrity,
    )


_cached_config: Optional[UnfoldConfig] = None


def get_config() -> UnfoldConfig:
    """Return the cached config singleton. Loads from disk on first call."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config_cache() -> None:
    """Clear the cached config (useful for tests)."""
    global _cached_config
    _cached_config = None
