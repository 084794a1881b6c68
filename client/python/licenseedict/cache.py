"""On-disk cache of the last verified license."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from .errors import CacheError, CacheMissError
from .license import License

__all__ = ["CACHE_FILE_NAME", "CacheStore", "resolve_cache_dir"]

logger = logging.getLogger("licenseedict.cache")

CACHE_FILE_NAME = "license_cache.json"


def resolve_cache_dir(
    app_name: str = "", app_publisher: str = "", override_dir: str = ""
) -> Path:
    """Pick the cache directory.

    Order: explicit *override_dir*, then ``$XDG_CACHE_HOME/<publisher>/<app>``
    (``~/.cache`` when unset) if an app name is given, then
    ``<tmp>/licenseedict``.
    """
    if override_dir:
        return Path(override_dir)
    if app_name:
        base = os.environ.get("XDG_CACHE_HOME") or os.path.join(
            os.path.expanduser("~"), ".cache"
        )
        return Path(base, app_publisher, app_name)
    return Path(tempfile.gettempdir(), "licenseedict")


class CacheStore:
    """Saves and loads one JSON document holding a :class:`License`.

    Writes go through a temporary file and ``os.replace`` so readers never
    see a partial document.
    """

    def __init__(self, directory: Optional[Path] = None, disabled: bool = False) -> None:
        self._disabled = disabled or directory is None
        self._dir = Path(directory) if directory is not None else None

    @classmethod
    def for_app(
        cls,
        app_name: str = "",
        app_publisher: str = "",
        override_dir: str = "",
        disabled: bool = False,
    ) -> "CacheStore":
        if disabled:
            return cls(disabled=True)
        return cls(resolve_cache_dir(app_name, app_publisher, override_dir))

    @property
    def disabled(self) -> bool:
        return self._disabled

    @property
    def path(self) -> Optional[Path]:
        if self._dir is None:
            return None
        return self._dir / CACHE_FILE_NAME

    def save(self, license: License) -> None:
        """Persist *license*.

        Raises:
            CacheError: If the directory or file cannot be written.
        """
        if self._disabled or self._dir is None:
            return

        data = json.dumps(license.to_dict()).encode("utf-8")
        try:
            self._dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._dir), prefix=".license_cache.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.chmod(tmp_path, 0o600)
                os.replace(tmp_path, str(self._dir / CACHE_FILE_NAME))
            except BaseException:
                _unlink_quietly(tmp_path)
                raise
        except OSError as exc:
            raise CacheError(f"cannot write license cache in {self._dir}: {exc}") from exc

    def load(self) -> License:
        """Return the cached license.

        Raises:
            CacheMissError: If caching is disabled or nothing was saved yet.
            CacheError: If the cache file exists but cannot be read or parsed.
        """
        if self._disabled or self._dir is None:
            raise CacheMissError("license cache is disabled")

        path = self._dir / CACHE_FILE_NAME
        try:
            raw = path.read_bytes()
        except FileNotFoundError as exc:
            raise CacheMissError(f"no cached license at {path}") from exc
        except OSError as exc:
            raise CacheError(f"cannot read license cache {path}: {exc}") from exc

        try:
            return License.from_dict(json.loads(raw))
        except (ValueError, TypeError, OverflowError, OSError) as exc:
            raise CacheError(f"corrupt license cache {path}: {exc}") from exc

    def clear(self) -> None:
        """Remove the cached license, if any."""
        path = self.path
        if self._disabled or path is None:
            return
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise CacheError(f"cannot remove license cache {path}: {exc}") from exc

    def __repr__(self) -> str:
        if self._disabled:
            return "<CacheStore disabled>"
        return f"<CacheStore dir={str(self._dir)!r}>"


def _unlink_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except OSError:
        pass
