"""File-backed storage for one user's credential record."""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from .models import CredentialRecord

logger = logging.getLogger(__name__)


class CredentialStore:
    """Reads and writes a CredentialRecord as a small JSON file.

    Writes go to a temporary file in the same directory which is then renamed
    over the target, so a reader sees either the old record or the new one.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def read(self) -> Optional[CredentialRecord]:
        """Return the stored record, or None if there is no usable one."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"[CredentialStore] Cannot read {self.path}: {e}")
            return None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"[CredentialStore] Corrupt credential file {self.path}: {e}")
            return None

        # A cleared store holds an empty object
        if not isinstance(data, dict) or not data:
            return None

        try:
            return CredentialRecord.model_validate(data)
        except ValidationError as e:
            logger.warning(f"[CredentialStore] Invalid credential record in {self.path}: {e}")
            return None

    def write(self, record: CredentialRecord) -> None:
        """Atomically replace the stored record."""
        self._write_json(record.to_storage())

    def clear(self) -> None:
        """Reset the store to the logged-out state."""
        self._write_json({})

    def _write_json(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
