"""Tests for the command line interface."""

import pytest

from revmigrate import cli
from revmigrate.extractors.json_export import JSONExportSource
from revmigrate.extractors.rethinkdb_source import RethinkDBSource
from revmigrate.loaders.memory import MemoryStore
from revmigrate.models.migration import MigrationConfig
from revmigrate.services.indexer import HTTPSearchIndexer, NullIndexer

ENVIRONMENT = [
    "DATABASE_URL",
    "POSTGRES_NAMESPACE",
    "MIGRATION_SOURCE_DIR",
    "MIGRATION_BATCH_SIZE",
    "MIGRATION_OUTPUT_DIR",
    "SEARCH_URL",
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ENVIRONMENT:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def target(monkeypatch, store):
    """Route every command to the in-memory store."""
    monkeypatch.setattr(cli, "create_target_store", lambda config: store)
    return store


@pytest.fixture
def export(write_export, docs):
    user = docs.user()
    things = [docs.thing(user["id"]) for _ in range(2)]
    return write_export({"users": [user], "things": things})


def refuse_prompt(prompt):
    raise AssertionError("unexpected confirmation prompt")


class TestMain:

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 1
        assert "usage: revmigrate" in capsys.readouterr().out

    def test_errors_become_exit_code(self, target, tmp_path, capsys):
        code = cli.main(["validate", "--source-dir", str(tmp_path / "missing")])

        assert code == 1
        assert "Export directory not found" in capsys.readouterr().err


class TestBuildConfig:
    """Flags are applied on top of the environment."""

    def test_environment_then_flags(self, monkeypatch):
        monkeypatch.setenv("MIGRATION_BATCH_SIZE", "250")
        monkeypatch.setenv("MIGRATION_OUTPUT_DIR", "/var/reports")
        args = cli.build_parser().parse_args(["migrate", "--dry-run", "--table", "things", "--skip-schema"])

        config = cli.build_config(args)

        assert config.batch_size == 250
        assert config.output_dir == "/var/reports"
        assert config.dry_run
        assert config.table == "things"
        assert not config.apply_schema

    def test_flag_overrides_environment(self, monkeypatch):
        monkeypatch.setenv("MIGRATION_BATCH_SIZE", "250")
        args = cli.build_parser().parse_args(["migrate", "--batch-size", "50"])

        assert cli.build_config(args).batch_size == 50


class TestFactories:

    def test_export_directory_selects_json_source(self, tmp_path):
        source = cli.create_source_store(MigrationConfig(source_dir=str(tmp_path)))
        assert isinstance(source, JSONExportSource)

    def test_default_source_is_rethinkdb(self):
        source = cli.create_source_store(MigrationConfig(rethinkdb_host="db", rethinkdb_port=28016))
        assert isinstance(source, RethinkDBSource)
        assert (source.host, source.port) == ("db", 28016)

    def test_indexer(self):
        assert isinstance(cli.create_indexer(MigrationConfig()), NullIndexer)
        indexer = cli.create_indexer(MigrationConfig(search_url="http://localhost:9200"))
        assert isinstance(indexer, HTTPSearchIndexer)


class TestMigrateCommand:
    """The migrate command."""

    def test_successful_migration(self, target, export, report_dir, capsys):
        code = cli.main(["migrate", "--source-dir", export, "--output-dir", str(report_dir)])

        out = capsys.readouterr().out
        assert code == 0
        assert target.count("users") == 1
        assert target.count("things") == 2
        assert "RETHINKDB TO POSTGRESQL MIGRATION REPORT" in out
        assert "Overall status: SUCCESS" in out
        assert "Report (json):" in out
        assert len(list(report_dir.glob("migration-summary-*.txt"))) == 1

    def test_dry_run(self, target, export, report_dir, capsys):
        code = cli.main(["migrate", "--dry-run", "--source-dir", export, "--output-dir", str(report_dir)])

        assert code == 0
        assert target.count("things") == 0
        assert "Mode: DRY RUN" in capsys.readouterr().out

    def test_failed_migration(self, target, write_export, report_dir):
        export = write_export({"users": [42]})

        code = cli.main(["migrate", "--source-dir", export, "--output-dir", str(report_dir)])

        assert code == 1

    def test_single_table(self, target, export, report_dir):
        code = cli.main(["migrate", "--table", "users", "--source-dir", export, "--output-dir", str(report_dir)])

        assert code == 0
        assert target.count("users") == 1
        assert target.count("things") == 0


class TestValidateCommand:
    """The validate command."""

    def test_schema_only_passes(self, target, capsys):
        assert cli.main(["validate", "--schema-only"]) == 0
        assert "VALIDATION PASSED" in capsys.readouterr().out

    def test_schema_only_fails_on_empty_store(self, monkeypatch, capsys):
        monkeypatch.setattr(cli, "create_target_store", lambda config: MemoryStore())

        assert cli.main(["validate", "--schema-only"]) == 1
        out = capsys.readouterr().out
        assert "VALIDATION FAILED" in out
        assert "Missing table: users" in out

    def test_against_source_after_migration(self, target, export, report_dir, capsys):
        cli.main(["migrate", "--source-dir", export, "--output-dir", str(report_dir)])
        target.connect()
        capsys.readouterr()

        code = cli.main(["validate", "--verbose", "--source-dir", export])

        assert code == 0
        assert '"counts"' in capsys.readouterr().out

    def test_unknown_table(self, target, export, capsys):
        assert cli.main(["validate", "--table", "nonsense", "--source-dir", export]) == 1
        assert "Unknown entity kind" in capsys.readouterr().err


class TestRollbackCommand:
    """The rollback command."""

    @pytest.fixture
    def migrated(self, target, user_id):
        return target

    def test_requires_an_action(self, migrated, capsys):
        assert cli.main(["rollback"]) == 1
        assert "Nothing to do" in capsys.readouterr().out

    def test_prompt_declined(self, migrated, monkeypatch, report_dir):
        monkeypatch.setattr("builtins.input", lambda prompt: "no")

        code = cli.main(["rollback", "--clear-postgres", "--output-dir", str(report_dir)])

        assert code == 1
        assert migrated.count("users") == 1
        assert not report_dir.exists()

    def test_prompt_confirmed(self, migrated, monkeypatch, report_dir, capsys):
        monkeypatch.setattr("builtins.input", lambda prompt: "yes")

        code = cli.main(["rollback", "--clear-postgres", "--output-dir", str(report_dir)])

        assert code == 0
        assert "ROLLBACK COMPLETE" in capsys.readouterr().out
        assert migrated.connect().count("users") == 0
        assert len(list(report_dir.glob("rollback-report-*.json"))) == 1

    def test_dry_run_does_not_prompt(self, migrated, monkeypatch, report_dir, capsys):
        monkeypatch.setattr("builtins.input", refuse_prompt)

        code = cli.main(["rollback", "--clear-postgres", "--dry-run", "--output-dir", str(report_dir)])

        assert code == 0
        out = capsys.readouterr().out
        assert "ROLLBACK PREVIEW" in out
        assert "Records deleted: 1" in out
        assert migrated.connect().count("users") == 1

    def test_single_table(self, migrated, report_dir):
        code = cli.main([
            "rollback", "--clear-postgres", "--confirm", "--table", "users", "--output-dir", str(report_dir),
        ])

        assert code == 0
        assert migrated.connect().count("users") == 0

    def test_unknown_table(self, migrated, capsys):
        assert cli.main(["rollback", "--clear-postgres", "--confirm", "--table", "nonsense"]) == 1
        assert migrated.count("users") == 1

    def test_restore_backup_unavailable(self, migrated, capsys):
        code = cli.main(["rollback", "--restore-backup", "backup.sql", "--confirm"])

        assert code == 1
        assert "not yet implemented" in capsys.readouterr().err
        assert migrated.count("users") == 1


class TestSchemaCommand:

    def test_applies_then_up_to_date(self, monkeypatch, capsys):
        store = MemoryStore()
        monkeypatch.setattr(cli, "create_target_store", lambda config: store)

        assert cli.main(["schema"]) == 0
        assert "Applied 15 migration(s)" in capsys.readouterr().out

        assert cli.main(["schema"]) == 0
        assert "Schema is up to date" in capsys.readouterr().out
