import pytest

from fleet_secrets.errors import ConfigError, MissingSecretError
from fleet_secrets.models import SecretSpec
from fleet_secrets.resolver import CsvSecretSource, EnvironmentSecretSource, SecretResolver


class CountingSource:
    def __init__(self, values):
        self.values = values
        self.lookups = []

    def get(self, key):
        self.lookups.append(key)
        return self.values.get(key)


def test_resolves_from_environment():
    resolver = SecretResolver([EnvironmentSecretSource({"API_KEY": "s3cr3t"})])
    assert resolver.resolve(SecretSpec("API_KEY")) == "s3cr3t"


def test_missing_secret_raises():
    resolver = SecretResolver([EnvironmentSecretSource({})])
    with pytest.raises(MissingSecretError) as excinfo:
        resolver.resolve(SecretSpec("API_KEY"))
    assert excinfo.value.name == "API_KEY"


def test_empty_value_counts_as_missing():
    resolver = SecretResolver([EnvironmentSecretSource({"API_KEY": ""})])
    with pytest.raises(MissingSecretError):
        resolver.resolve(SecretSpec("API_KEY"))


def test_values_cached_for_the_run():
    source = CountingSource({"API_KEY": "v1"})
    resolver = SecretResolver([source])
    resolver.resolve(SecretSpec("API_KEY"))
    source.values["API_KEY"] = "v2"
    assert resolver.resolve(SecretSpec("API_KEY")) == "v1"
    assert source.lookups == ["API_KEY"]


def test_sources_consulted_in_order(tmp_path):
    csv_file = tmp_path / "secrets.csv"
    csv_file.write_text("name,value\nAPI_KEY,from-csv\nDB_PASSWORD,hunter2\n", encoding="utf-8")
    resolver = SecretResolver([
        EnvironmentSecretSource({"API_KEY": "from-env"}),
        CsvSecretSource(str(csv_file)),
    ])
    assert resolver.resolve(SecretSpec("API_KEY")) == "from-env"
    assert resolver.resolve(SecretSpec("DB_PASSWORD")) == "hunter2"


def test_resolve_all_reports_each_missing_secret_once():
    resolver = SecretResolver([EnvironmentSecretSource({"A": "1"})])
    resolved, missing = resolver.resolve_all([SecretSpec("A"), SecretSpec("B"), SecretSpec("C")])
    assert [(spec.name, value) for spec, value in resolved] == [("A", "1")]
    assert [e.name for e in missing] == ["B", "C"]


def test_csv_source_requires_columns(tmp_path):
    csv_file = tmp_path / "secrets.csv"
    csv_file.write_text("secret,val\nA,1\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="'name' and 'value'"):
        CsvSecretSource(str(csv_file)).get("A")


def test_csv_source_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        CsvSecretSource(str(tmp_path / "nope.csv")).get("A")


def test_csv_source_loaded_when_constructed(tmp_path):
    csv_file = tmp_path / "secrets.csv"
    csv_file.write_text("name,value\nAPI_KEY,v1\n", encoding="utf-8")
    source = CsvSecretSource(str(csv_file))
    csv_file.write_text("name,value\nAPI_KEY,v2\n", encoding="utf-8")
    assert source.get("API_KEY") == "v1"
