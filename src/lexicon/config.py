"""Configuration management for the lexicon scanner."""

import fcntl
import os
import sys
import tempfile
from contextlib import contextmanager
from pathlib import Path

import toml
from pydantic import BaseModel, Field, ValidationError

CONFIG_DIR = Path.home() / ".lexicon"
CONFIG_FILE = CONFIG_DIR / "config.toml"
LOCK_DIR = CONFIG_DIR / "locks"

# Every valid store image starts with this header
SQLITE_MAGIC = b"SQLite format 3\x00"


# =============================================================================
# File Locking Context Manager
# =============================================================================

@contextmanager
def _file_lock(name: str, lock_dir: Path | None = None):
    """Context manager for file-based locking.

    Usage:
        with _file_lock("snapshot-cache"):
            # ... critical section ...
    """
    # Validate lock name to prevent path traversal
    if not name or not all(c.isalnum() or c in "_-" for c in name):
        raise ValueError(f"Invalid lock name: {name}")

    lock_dir = lock_dir or LOCK_DIR
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / f"{name}.lock"

    fd = os.open(str(lock_file), os.O_CREAT | os.O_WRONLY, 0o600)
    try:
        lock_fh = os.fdopen(fd, 'w', encoding='utf-8')
    except Exception:
        os.close(fd)
        raise

    try:
        fcntl.flock(lock_fh.fileno(), fcntl.LOCK_EX)
        yield lock_fh
    finally:
        try:
            fcntl.flock(lock_fh.fileno(), fcntl.LOCK_UN)
        finally:
            lock_fh.close()


class ServerConfig(BaseModel):
    """Companion snapshot service (GET /status, GET|POST /<snapshot_name>)."""

    enabled: bool = True
    base_url: str = "http://localhost:3001"
    snapshot_name: str = "lexicon.sqlite"
    timeout: float = Field(default=5.0, gt=0.0)


class PageNamingConfig(BaseModel):
    """Filename convention for scanned pages: <prefix><NNNN><extension>."""

    prefix: str = "fuerst_lex_"
    extension: str = ".jpg"
    pad_width: int = Field(default=4, ge=1, le=8)
    # Directory or URL that holds the page images, keyed by filename
    image_base: str | None = None
    # Page range of the printed lexicon (used for gap detection)
    first_page: int = Field(default=44, ge=0)
    last_page: int = Field(default=1558, ge=0)

    def filename(self, number: int) -> str:
        """Filename for a page number under this convention."""
        return f"{self.prefix}{number:0{self.pad_width}d}{self.extension}"


class SweepConfig(BaseModel):
    """Validation/correction sweep settings."""

    validation_batch_size: int = Field(default=25, ge=1, le=200)
    correction_batch_size: int = Field(default=10, ge=1, le=100)
    # None = no request ceiling
    max_requests: int | None = Field(default=None, ge=1)
    include_valid: bool = False


class JudgeConfig(BaseModel):
    """Settings for the Claude-backed validation/correction/extraction calls."""

    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = Field(default=8192, ge=256, le=64000)
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)
    timeout: float = Field(default=120.0, gt=0.0)
    extraction_prompt: str | None = None


class LexiconConfig(BaseModel):
    """Main configuration model."""

    cache_dir: Path = Field(default_factory=lambda: CONFIG_DIR / "cache")
    logs_dir: Path = Field(default_factory=lambda: CONFIG_DIR / "logs")
    # Tried in order when neither the server nor the cache has a usable image
    prebuilt_locations: list[str] = Field(
        default_factory=lambda: ["lexicon.sqlite", "public/lexicon.sqlite"]
    )
    strongs_locations: list[str] = Field(
        default_factory=lambda: ["strongs.sqlite", "public/strongs.sqlite"]
    )
    server: ServerConfig = Field(default_factory=ServerConfig)
    pages: PageNamingConfig = Field(default_factory=PageNamingConfig)
    sweep: SweepConfig = Field(default_factory=SweepConfig)
    judge: JudgeConfig = Field(default_factory=JudgeConfig)
    id_prefix: str = "F"

    @property
    def cache_file(self) -> Path:
        return self.cache_dir / "lexicon_cache.sqlite"


def ensure_config_dirs(config: LexiconConfig) -> None:
    """Create config directories if they don't exist."""
    config.cache_dir.mkdir(parents=True, exist_ok=True)
    config.logs_dir.mkdir(parents=True, exist_ok=True)


def load_config(path: Path | None = None) -> LexiconConfig:
    """Load configuration from file, or create defaults."""
    path = path or CONFIG_FILE
    if path.exists():
        try:
            data = toml.load(path)
            for key in ["cache_dir", "logs_dir"]:
                if key in data and isinstance(data[key], str):
                    data[key] = Path(data[key]).expanduser()
                    if not data[key].is_absolute():
                        raise ValueError(f"Config path must be absolute: {key}={data[key]}")
            config = LexiconConfig(**data)
        except ValidationError as e:
            print(f"Warning: Config validation failed ({e}), using defaults", file=sys.stderr)
            config = LexiconConfig()
        except (toml.TomlDecodeError, ValueError, TypeError) as e:
            print(f"Warning: Failed to load config ({e}), using defaults", file=sys.stderr)
            config = LexiconConfig()
    else:
        config = LexiconConfig()
        save_config(config, path)

    ensure_config_dirs(config)
    return config


def save_config(config: LexiconConfig, path: Path | None = None) -> None:
    """Save configuration to file with atomic write."""
    path = path or CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(exclude_none=True)
    # Convert Path objects to strings for TOML
    data["cache_dir"] = str(config.cache_dir)
    data["logs_dir"] = str(config.logs_dir)

    temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".config_", suffix=".toml.tmp")
    try:
        with os.fdopen(temp_fd, 'w', encoding='utf-8') as f:
            toml.dump(data, f)

        os.chmod(temp_path, 0o600)
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise
