"""Configuration for the gitnote-sync CLI and sync engine.

Reads repository and sync settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    GITNOTE_OWNER: Repository owner (required unless GITNOTE_REPOSITORY is set)
    GITNOTE_REPO: Repository name (required unless GITNOTE_REPOSITORY is set)
    GITNOTE_REPOSITORY: Shorthand "owner/repo"
    GITNOTE_BRANCH: Branch to sync (optional, default: main)
    GITNOTE_API_BASE: API root (optional, default: https://api.github.com)
    GITNOTE_TOKEN / GITHUB_TOKEN: Access token (optional, read-only without one)
    GITNOTE_STORE: Local store file (optional, default: .gitnote/store.json)
    GITNOTE_LAZY_BINARY: Pull binaries as references (optional, default: true)
    GITNOTE_BLOB_CACHE_TTL: Blob cache TTL in seconds (optional, default: 3600)
    GITNOTE_REQUEST_TIMEOUT: HTTP timeout in seconds (optional, default: 30)
    GITNOTE_DEBUG: Enable debug logging (optional, default: false)
    GITNOTE_CONFIG: Path to a YAML config file (optional)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.github.com"
DEFAULT_STORE_PATH = ".gitnote/store.json"


@dataclass
class Config:
    owner: str
    repo: str
    branch: str = "main"
    api_base: str = DEFAULT_API_BASE
    token: str | None = None
    store_path: str = DEFAULT_STORE_PATH
    lazy_binary: bool = True
    blob_cache_ttl: int = 3600
    request_timeout: int = 30
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the API URL is malformed or the repository is unset.
    """
    config.api_base = config.api_base.strip()

    if not config.api_base.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid API base '{config.api_base}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_base)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid API base '{config.api_base}': URL must include a hostname"
        )

    config.api_base = config.api_base.removesuffix("/")

    for label, value in (("owner", config.owner), ("repo", config.repo)):
        if not value.strip():
            raise ValueError(
                f"Repository {label} cannot be empty. Set GITNOTE_{label.upper()} environment variable."
            )
        if "/" in value:
            raise ValueError(
                f"Invalid repository {label} '{value}': must not contain '/'"
            )

    if not config.branch.strip():
        raise ValueError("Branch name cannot be empty.")

    if not config.token:
        logger.warning(
            "No access token configured: running read-only, pushes will fail."
        )


def discover_config_file() -> Path | None:
    """Return the first existing YAML config file, or ``None``.

    Search order:

    1. ``$GITNOTE_CONFIG``
    2. ``./.gitnote/config.yml`` and ``./.gitnote/config.yaml``
    3. ``~/.gitnote/config.yaml``
    """
    candidates: list[Path] = []
    env_path = os.getenv("GITNOTE_CONFIG")
    if env_path:
        candidates.append(Path(env_path).expanduser())
    cwd = Path.cwd()
    candidates.append(cwd / ".gitnote" / "config.yml")
    candidates.append(cwd / ".gitnote" / "config.yaml")
    candidates.append(Path.home() / ".gitnote" / "config.yaml")
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def load_yaml_fallbacks(path: Path | None = None) -> dict[str, Any]:
    """Read fallback settings from a YAML config file.

    The ``github`` and ``sync`` sections are flattened into one dict.

    Example file::

        github:
          owner: octocat
          repo: notes
          branch: main
        sync:
          store: ~/.gitnote/notes.json
          lazy_binary: false

    Args:
        path: Explicit config file.  Discovered when omitted.

    Returns:
        Dict of fallback values; empty when no file is found.

    Raises:
        ValueError: If the file is not a YAML mapping.
    """
    config_path = path or discover_config_file()
    if config_path is None:
        return {}

    with open(config_path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config file {config_path}: top level must be a mapping"
        )

    fallbacks: dict[str, Any] = {}
    for section in ("github", "sync"):
        values = data.get(section) or {}
        if not isinstance(values, dict):
            raise ValueError(
                f"Invalid config file {config_path}: '{section}' must be a mapping"
            )
        fallbacks.update(values)
    logger.debug("Loaded config fallbacks from %s", config_path)
    return fallbacks


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _resolve_int(
    env_key: str,
    fb: dict[str, Any],
    fb_key: str,
    default: int,
    low: int,
    high: int,
) -> int:
    raw = os.getenv(env_key)
    source = env_key
    if raw is None and fb_key in fb:
        raw = str(fb[fb_key])
        source = fb_key
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {source} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {source} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    owner: str | None = None,
    repo: str | None = None,
    branch: str | None = None,
    token: str | None = None,
    store_path: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        owner: Override repository owner.
        repo: Override repository name.
        branch: Override branch.
        token: Override access token.
        store_path: Override local store location.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Dict of values from ``load_yaml_fallbacks()``.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the repository is missing after checking all sources,
            or a value is out of range.
    """
    fb = yaml_fallbacks or {}

    # --- Repository: CLI > env > YAML > error ---

    env_owner = os.getenv("GITNOTE_OWNER")
    env_repo = os.getenv("GITNOTE_REPO")
    repository = os.getenv("GITNOTE_REPOSITORY")
    if repository and "/" in repository:
        shorthand_owner, _, shorthand_repo = repository.partition("/")
        env_owner = env_owner or shorthand_owner
        env_repo = env_repo or shorthand_repo

    final_owner = owner or env_owner or fb.get("owner")
    final_repo = repo or env_repo or fb.get("repo")
    if not final_owner or not final_repo:
        raise ValueError(
            "Repository not found. Set GITNOTE_OWNER and GITNOTE_REPO "
            "(or GITNOTE_REPOSITORY=owner/repo), pass --owner/--repo, "
            "or add 'owner' and 'repo' to the config file."
        )

    final_branch = (
        branch or os.getenv("GITNOTE_BRANCH") or fb.get("branch") or "main"
    )
    final_api_base = (
        os.getenv("GITNOTE_API_BASE") or fb.get("api_base") or DEFAULT_API_BASE
    )
    final_token = (
        token
        or os.getenv("GITNOTE_TOKEN")
        or os.getenv("GITHUB_TOKEN")
        or fb.get("token")
        or None
    )
    final_store = (
        store_path
        or os.getenv("GITNOTE_STORE")
        or fb.get("store")
        or DEFAULT_STORE_PATH
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    env_lazy = _get_bool_env("GITNOTE_LAZY_BINARY")
    if env_lazy is not None:
        final_lazy = env_lazy
    else:
        final_lazy = bool(fb.get("lazy_binary", True))

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("GITNOTE_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    final_ttl = _resolve_int(
        "GITNOTE_BLOB_CACHE_TTL", fb, "blob_cache_ttl", 3600, 1, 86400
    )
    final_timeout = _resolve_int(
        "GITNOTE_REQUEST_TIMEOUT", fb, "request_timeout", 30, 1, 600
    )

    config = Config(
        owner=str(final_owner).strip(),
        repo=str(final_repo).strip(),
        branch=str(final_branch).strip(),
        api_base=str(final_api_base),
        token=final_token,
        store_path=str(Path(final_store).expanduser()),
        lazy_binary=final_lazy,
        blob_cache_ttl=final_ttl,
        request_timeout=final_timeout,
        debug=final_debug,
    )

    validate_config(config)

    return config
