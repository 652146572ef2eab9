"""Integration tests for the command-line interface."""

import json
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import structlog
from click.testing import CliRunner, Result

from shelfwatch.cli.main import cli, load_cycle_items
from shelfwatch.data_model.fingerprint import compute_item_id
from shelfwatch.store.migrations import CURRENT_VERSION


NOW = datetime.now(UTC).replace(microsecond=0)
DUNE_ID = compute_item_id("Dune", "Frank Herbert", "Alice")


@pytest.fixture(autouse=True)
def isolated_env(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None]:
    """Run each command away from any local .env and restore logging after."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "SHELFWATCH_DB_PATH",
        "SHELFWATCH_SNAPSHOT_RETENTION_DAYS",
        "SHELFWATCH_TRANSITION_RETENTION_DAYS",
        "SHELFWATCH_REPORT_DAYS_BACK",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
    structlog.reset_defaults()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """State database path."""
    return tmp_path / "state" / "shelfwatch.sqlite"


def write_json(path: Path, payload: Any) -> Path:
    """Write a JSON payload and return its path."""
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def run(*args: str) -> Result:
    """Invoke the CLI with console logs."""
    return CliRunner().invoke(cli, ["--no-json-logs", *args])


def ingest(db_path: Path, input_path: Path, hours_ago: int, *extra: str) -> Result:
    """Run the ingest command for Alice."""
    at = (NOW - timedelta(hours=hours_ago)).isoformat()
    return run(
        "ingest",
        "--state",
        str(db_path),
        "--patron",
        "Alice",
        "--input",
        str(input_path),
        "--at",
        at,
        *extra,
    )


@pytest.fixture
def populated_db(db_path: Path, tmp_path: Path) -> Path:
    """Database with a ready hold that vanished in the second cycle."""
    first = write_json(
        tmp_path / "first.json",
        {
            "checkouts": [],
            "holds": [
                {
                    "title": "Dune",
                    "author": "Frank Herbert",
                    "status": "Ready",
                    "type": "Book",
                }
            ],
        },
    )
    second = write_json(tmp_path / "second.json", {"checkouts": [], "holds": []})

    assert ingest(db_path, first, 2).exit_code == 0
    assert ingest(db_path, second, 1).exit_code == 0
    return db_path


class TestLoadCycleItems:
    """Tests for load_cycle_items."""

    def test_grouped_arrays(self, tmp_path: Path) -> None:
        """Test checkouts and holds get their kind, patron and id."""
        path = write_json(
            tmp_path / "in.json",
            {
                "checkouts": [{"title": "Emma", "author": "Jane Austen"}],
                "holds": [{"item_id": "h1", "title": "Dune", "status": "Ready"}],
            },
        )

        items = load_cycle_items(path, "Alice")

        assert [item["item_kind"] for item in items] == ["checkout", "hold"]
        assert items[0]["item_id"] == compute_item_id("Emma", "Jane Austen", "Alice")
        assert items[1]["item_id"] == "h1"
        assert all(item["patron_name"] == "Alice" for item in items)

    def test_flat_items(self, tmp_path: Path) -> None:
        """Test a flat items array keeps the given kinds."""
        path = write_json(
            tmp_path / "in.json",
            [{"item_kind": "hold", "item_id": "h1", "title": "Dune"}],
        )

        items = load_cycle_items(path, "Alice")

        assert items == [
            {
                "item_kind": "hold",
                "item_id": "h1",
                "title": "Dune",
                "patron_name": "Alice",
            }
        ]

    def test_rejects_scalars(self, tmp_path: Path) -> None:
        """Test a JSON scalar is not a cycle."""
        path = write_json(tmp_path / "in.json", 42)
        with pytest.raises(ValueError, match="JSON object or array"):
            load_cycle_items(path, "Alice")


class TestIngestCommand:
    """Tests for the ingest command."""

    def test_baseline_then_disappearance(self, db_path: Path, tmp_path: Path) -> None:
        """Test the second cycle reports the vanished ready hold."""
        first = write_json(
            tmp_path / "first.json",
            {
                "holds": [
                    {"title": "Dune", "author": "Frank Herbert", "status": "Ready"}
                ]
            },
        )
        second = write_json(tmp_path / "second.json", {"holds": []})

        baseline = ingest(db_path, first, 2, "--json")
        assert baseline.exit_code == 0, baseline.output
        baseline_data = json.loads(baseline.stdout)
        assert baseline_data["baseline_only"] is True
        assert baseline_data["snapshots_recorded"] == 1

        result = ingest(db_path, second, 1, "--json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["baseline_only"] is False
        assert len(data["transitions"]) == 1
        transition = data["transitions"][0]
        assert transition["item_id"] == DUNE_ID
        assert transition["transition_kind"] == "disappeared"
        assert transition["from_state"] == "hold_ready"
        assert transition["to_state"] is None
        assert transition["is_expected"] is False
        assert transition["notes"] == "Hold disappeared while ready for pickup"

    def test_text_summary(self, db_path: Path, tmp_path: Path) -> None:
        """Test the human-readable summary."""
        path = write_json(tmp_path / "in.json", {"checkouts": [{"title": "Emma"}]})

        result = ingest(db_path, path, 1)

        assert result.exit_code == 0, result.output
        assert "Snapshots recorded: 1" in result.stdout
        assert "Baseline cycle" in result.stdout

    def test_invalid_record(self, db_path: Path, tmp_path: Path) -> None:
        """Test malformed records fail without writing."""
        path = write_json(
            tmp_path / "in.json",
            {"holds": [{"title": "Dune", "queue_position": -3}]},
        )

        result = ingest(db_path, path, 1)

        assert result.exit_code == 1
        assert "Input validation failed" in result.output

    def test_unreadable_input(self, db_path: Path, tmp_path: Path) -> None:
        """Test a broken JSON file is reported."""
        path = tmp_path / "in.json"
        path.write_text("{not json", encoding="utf-8")

        result = ingest(db_path, path, 1)

        assert result.exit_code == 1
        assert "Could not read" in result.output

    def test_invalid_timestamp(self, db_path: Path, tmp_path: Path) -> None:
        """Test --at must be ISO-8601."""
        path = write_json(tmp_path / "in.json", {"holds": []})

        result = run(
            "ingest",
            "--state",
            str(db_path),
            "--patron",
            "Alice",
            "--input",
            str(path),
            "--at",
            "yesterday",
        )

        assert result.exit_code == 1
        assert "Invalid timestamp" in result.output

    def test_repeated_timestamp_rejected(
        self, populated_db: Path, tmp_path: Path
    ) -> None:
        """Test ingesting a cycle again at the same time fails without writes."""
        empty = write_json(tmp_path / "again.json", {"holds": []})

        result = ingest(populated_db, empty, 1)

        assert result.exit_code == 1
        assert "already has a cycle" in result.output

        stats = run("db-stats", "--state", str(populated_db), "--json")
        assert json.loads(stats.stdout)["tables"]["item_transitions"] == 1

    def test_repeated_empty_cycles_report_once(
        self, populated_db: Path, tmp_path: Path
    ) -> None:
        """Test later empty cycles add no missing-item events."""
        empty = write_json(tmp_path / "empty.json", {"holds": []})
        assert ingest(populated_db, empty, 0).exit_code == 0

        result = run("missing-report", "--state", str(populated_db), "--json")

        assert result.exit_code == 0, result.output
        assert len(json.loads(result.stdout)) == 1


class TestReportCommands:
    """Tests for the report commands."""

    def test_unexpected_json(self, populated_db: Path) -> None:
        """Test unexpected transitions as JSON."""
        result = run("unexpected", "--state", str(populated_db), "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert [t["item_id"] for t in data] == [DUNE_ID]

    def test_unexpected_text(self, populated_db: Path) -> None:
        """Test the text listing names the item."""
        result = run("unexpected", "--state", str(populated_db), "--days", "7")

        assert result.exit_code == 0, result.output
        assert "Unexpected transitions (last 7 days): 1" in result.stdout
        assert "Dune" in result.stdout

    def test_missing_report_json(self, populated_db: Path) -> None:
        """Test the missing-items report groups the cycle."""
        result = run("missing-report", "--state", str(populated_db), "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert len(data) == 1
        assert data[0]["patron_name"] == "Alice"
        assert data[0]["total_missing"] == 1
        assert data[0]["missing_items"][0]["title"] == "Dune"

    def test_recent_items(self, populated_db: Path) -> None:
        """Test recent ids are printed one per line."""
        result = run("recent-items", "--state", str(populated_db))

        assert result.exit_code == 0, result.output
        assert result.stdout.split() == [DUNE_ID]


class TestMaintenanceCommands:
    """Tests for prune and db-stats."""

    def test_prune_without_policy_is_noop(self, populated_db: Path) -> None:
        """Test nothing is pruned unless a period is given."""
        result = run("prune", "--state", str(populated_db))

        assert result.exit_code == 0, result.output
        assert "nothing pruned" in result.stdout

    def test_prune_keeps_latest_cycle(self, populated_db: Path) -> None:
        """Test pruning spares recent history."""
        result = run("prune", "--state", str(populated_db), "--snapshot-days", "1")

        assert result.exit_code == 0, result.output
        assert "Snapshots pruned: 0" in result.stdout

    def test_db_stats_json(self, populated_db: Path) -> None:
        """Test database statistics as JSON."""
        result = run("db-stats", "--state", str(populated_db), "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["schema_version"] == CURRENT_VERSION
        assert data["tables"]["item_snapshots"] == 1
        assert data["tables"]["item_transitions"] == 1
        assert data["tables"]["scrape_cycles"] == 2
        assert data["patrons"] == ["Alice"]

    def test_db_stats_requires_existing_db(self, tmp_path: Path) -> None:
        """Test db-stats refuses a missing database."""
        result = run("db-stats", "--state", str(tmp_path / "missing.sqlite"))

        assert result.exit_code == 2


class TestStorageFailures:
    """Tests for commands pointed at a file that is not a database."""

    @pytest.fixture
    def broken_db(self, tmp_path: Path) -> Path:
        """A state path holding plain text."""
        path = tmp_path / "broken.sqlite"
        path.write_text("not a database " * 100, encoding="utf-8")
        return path

    @pytest.mark.parametrize(
        "command",
        [
            ["unexpected"],
            ["missing-report"],
            ["recent-items"],
            ["db-stats"],
            ["prune", "--snapshot-days", "1"],
        ],
    )
    def test_reports_error_without_traceback(
        self, broken_db: Path, command: list[str]
    ) -> None:
        """Test a storage failure exits 1 with a short message."""
        result = run(command[0], "--state", str(broken_db), *command[1:])

        assert result.exit_code == 1
        assert "Error: Cannot open" in result.stderr
        assert isinstance(result.exception, SystemExit)
