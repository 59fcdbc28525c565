"""
Credential stores - named string secrets for both destinations.

Keys are the camelCase names in CREDENTIAL_KEYS (apiKey, blueskyHandle, ...).
"""
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Sequence

from ..errors import CredentialError
from ..models import CREDENTIAL_KEYS, Credentials
from ..protocols import ICredentialStore

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIALS_FILE = Path("~/.config/crosspost/credentials.json")
ENV_PREFIX = "CROSSPOST_"


def env_name(key: str) -> str:
    """apiKey -> CROSSPOST_API_KEY"""
    snake = "".join(f"_{c}" if c.isupper() else c for c in key)
    return f"{ENV_PREFIX}{snake.upper()}"


class MemoryCredentialStore:
    """In-process store, mostly for tests and embedding."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})

    async def get(self, keys: Sequence[str]) -> Dict[str, Optional[str]]:
        return {key: self._values.get(key) for key in keys}

    async def set(self, pairs: Iterable[tuple]) -> None:
        for key, value in pairs:
            self._values[key] = value


class JsonFileCredentialStore:
    """Stores secrets in a JSON file readable only by the owner."""

    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path or DEFAULT_CREDENTIALS_FILE).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise CredentialError(f"could not read credentials file {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise CredentialError(f"credentials file {self._path} is not a JSON object")
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _save(self, data: Mapping[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(dict(data), indent=2, sort_keys=True), encoding="utf-8")
        os.chmod(tmp, 0o600)
        tmp.replace(self._path)

    async def get(self, keys: Sequence[str]) -> Dict[str, Optional[str]]:
        data = await asyncio.to_thread(self._load)
        return {key: data.get(key) or None for key in keys}

    async def set(self, pairs: Iterable[tuple]) -> None:
        def _update():
            data = self._load()
            for key, value in pairs:
                if value:
                    data[key] = value
                else:
                    data.pop(key, None)
            self._save(data)

        await asyncio.to_thread(_update)
        logger.debug("Saved credentials to %s", self._path)


class EnvCredentialStore:
    """Read-only store over CROSSPOST_* environment variables."""

    async def get(self, keys: Sequence[str]) -> Dict[str, Optional[str]]:
        return {key: os.getenv(env_name(key)) or None for key in keys}

    async def set(self, pairs: Iterable[tuple]) -> None:
        raise CredentialError("environment credentials are read-only")


class LayeredCredentialStore:
    """First non-empty value wins; writes go to the first store."""

    def __init__(self, *stores: ICredentialStore):
        if not stores:
            raise ValueError("LayeredCredentialStore needs at least one store")
        self._stores = stores

    async def get(self, keys: Sequence[str]) -> Dict[str, Optional[str]]:
        result: Dict[str, Optional[str]] = {key: None for key in keys}
        for store in self._stores:
            missing = [key for key, value in result.items() if not value]
            if not missing:
                break
            values = await store.get(missing)
            for key in missing:
                result[key] = values.get(key) or None
        return result

    async def set(self, pairs: Iterable[tuple]) -> None:
        await self._stores[0].set(pairs)


async def load_credentials(store: ICredentialStore) -> Credentials:
    """Read every known key from ``store``."""
    values = await store.get(list(CREDENTIAL_KEYS))
    return Credentials.from_mapping(values)


def require_twitter(credentials: Credentials) -> None:
    """
    Raises:
        CredentialError: a Twitter secret is missing
    """
    missing = credentials.missing_twitter_keys
    if missing:
        raise CredentialError(
            "Please set your Twitter credentials in Settings.", missing_keys=missing
        )
