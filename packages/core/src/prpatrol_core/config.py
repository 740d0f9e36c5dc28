import logging
import os
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

TARGET_FILTERS = ("own", "others", "all")
MODEL_PROVIDERS = ("anthropic", "openai")


def app_dir() -> Path:
    """Directory holding config.yml, selections.yml, the ledger and the status file."""
    return Path(os.environ.get("PRPATROL_HOME", "~/.prpatrol")).expanduser()


def default_config_path() -> Path:
    return app_dir() / "config.yml"


DEFAULT_CONFIG: dict = {
    "github_username": None,  # None = ask GitHub for the authenticated login
    "github_token_env": "GITHUB_TOKEN",
    "model": "anthropic",
    "model_name": None,  # None = provider default
    "max_tokens": 4000,
    "comment_header": "[AI Review Bot]",
    "review_target_filter": "all",
    "owner_allowlist": [],
    "repo_blocklist": [],
    "call_timeout_seconds": 300,  # 0 disables the per-call deadline
    "reclaim_after_seconds": 0,  # 0 = retry an unfinished claim on the next run
    "trivial_change_threshold": 5,
    "store_path": None,  # None = <app_dir>/cache.sqlite
    "status_path": None,  # None = <app_dir>/status.json
    "selections_path": None,  # None = <app_dir>/selections.yml
}


def load_config(config_path: Optional[str] = None, cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. config.yml (``~/.prpatrol/config.yml`` unless a path is given)
      3. CLI argument overrides

    Raises ValueError when ``review_target_filter`` or ``model`` hold an
    unsupported value.
    """
    config = {
        **DEFAULT_CONFIG,
        "owner_allowlist": list(DEFAULT_CONFIG["owner_allowlist"]),
        "repo_blocklist": list(DEFAULT_CONFIG["repo_blocklist"]),
    }

    path = Path(config_path).expanduser() if config_path else default_config_path()
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    if config["review_target_filter"] not in TARGET_FILTERS:
        raise ValueError(
            f"review_target_filter must be one of {', '.join(TARGET_FILTERS)}; got {config['review_target_filter']!r}"
        )
    if config["model"] not in MODEL_PROVIDERS:
        raise ValueError(f"Unknown model provider: {config['model']!r}. Choose 'anthropic' or 'openai'.")

    if config.get("max_concurrent") is not None:
        logger.warning("max_concurrent is ignored: pull requests are reviewed one at a time.")

    base = app_dir()
    config["store_path"] = config["store_path"] or str(base / "cache.sqlite")
    config["status_path"] = config["status_path"] or str(base / "status.json")
    config["selections_path"] = config["selections_path"] or str(base / "selections.yml")

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get(config["github_token_env"] or "GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

    return config


def load_selections(selections_path: str) -> list[str]:
    """Return the ``repos`` list from the persisted selection file ([] if it does not exist)."""
    path = Path(selections_path).expanduser()
    if not path.exists():
        return []
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    repos = data.get("repos") or []
    if not isinstance(repos, list):
        raise ValueError(f"'repos' in {path} must be a list")
    return [str(r) for r in repos]


def save_selections(selections_path: str, repos: list[str]) -> None:
    path = Path(selections_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump({"repos": list(repos)}, f, default_flow_style=False)
