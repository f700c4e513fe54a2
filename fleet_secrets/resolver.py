"""Secret value sources and the per-run resolver"""
import csv
import logging
import os
import threading
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import ConfigError, MissingSecretError
from .models import SecretSpec

logger = logging.getLogger(__name__)


class EnvironmentSecretSource:
    """Secrets exposed as environment variables (e.g. ``secrets: inherit`` + ``env:``)"""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    def get(self, key: str) -> Optional[str]:
        return self.environ.get(key)

    def __repr__(self):
        return "EnvironmentSecretSource()"


class CsvSecretSource:
    """Secrets read from a CSV file with ``name`` and ``value`` columns"""

    def __init__(self, filename: str):
        self.filename = filename
        # Loaded up front so a bad file is reported before the run starts
        self._values: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.filename):
            raise ConfigError(f"Secrets CSV file not found: {self.filename}")
        values = {}
        with open(self.filename, 'r', newline='', encoding='utf-8') as csvfile:
            reader = csv.DictReader(csvfile)
            if not reader.fieldnames or not {'name', 'value'} <= set(reader.fieldnames):
                raise ConfigError(f"Secrets CSV {self.filename} must have 'name' and 'value' columns")
            for row in reader:
                name = (row.get('name') or '').strip()
                if name:
                    values[name] = row.get('value') or ''
        logger.info(f"Loaded {len(values)} secret values from {self.filename}")
        return values

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def __repr__(self):
        return f"CsvSecretSource({self.filename!r})"


class SecretResolver:
    """Resolves each SecretSpec once per run, consulting sources in order"""

    def __init__(self, sources: Sequence = ()):
        self.sources = list(sources) or [EnvironmentSecretSource()]
        self._cache: Dict[str, str] = {}
        self._lock = threading.Lock()

    def resolve(self, spec: SecretSpec) -> str:
        with self._lock:
            if spec.name in self._cache:
                return self._cache[spec.name]
            for source in self.sources:
                value = source.get(spec.source_ref)
                if value:
                    self._cache[spec.name] = value
                    return value
        raise MissingSecretError(spec.name, spec.source_ref)

    def resolve_all(self, specs: Iterable[SecretSpec]) -> Tuple[List[Tuple[SecretSpec, str]], List[MissingSecretError]]:
        """Resolve every secret; missing ones are returned, not raised"""
        resolved = []
        missing = []
        for spec in specs:
            try:
                resolved.append((spec, self.resolve(spec)))
            except MissingSecretError as e:
                logger.warning(str(e))
                missing.append(e)
        return resolved, missing
