"""
Tests for the command line orchestrator.

Run with: pytest tests/test_main.py -v

Each test points the store at a fresh SQLite file so separate main()
calls share state the way separate shell invocations would.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import main as cli
from intake.models.transaction import Attachment
from intake.storage import RecordStore, SqliteKeyValueStore

COLLECTOR = "https://collector.example.com/intake"


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "records.db"
    monkeypatch.delenv("INTAKE_SETTINGS_FILE", raising=False)
    monkeypatch.setenv("INTAKE_STORAGE", str(path))
    monkeypatch.setenv("INTAKE_BASE_URL", COLLECTOR)
    monkeypatch.setenv("INTAKE_PACING_DELAY", "0")
    return path


def stored_records(db_path):
    return RecordStore(SqliteKeyValueStore(str(db_path))).list()


def add_purchase(product="Potatoes", quantity="12", price="18.4"):
    return cli.main([
        "add", "--type", "Purchase", "--product", product, "--quantity", quantity,
        "--unit", "kg", "--location", "Green market", "--price", price,
    ])


class TestRecordCommands:
    """Tests for add/edit/delete/list."""

    def test_add_persists_record(self, db_path):
        """Test that add writes a validated record to the store."""
        assert add_purchase() == 0

        records = stored_records(db_path)
        assert len(records) == 1
        assert records[0].product_name == "Potatoes"
        assert records[0].total_amount == 220.8

    def test_add_unloading_drops_price(self, db_path):
        """Test that unpriced types are stored with zero price."""
        exit_code = cli.main([
            "add", "--type", "Unloading", "--product", "Onions", "--quantity", "3",
            "--unit", "box", "--location", "Sadova", "--price", "7",
        ])
        assert exit_code == 0
        record = stored_records(db_path)[0]
        assert record.price_per_unit == 0.0
        assert record.total_amount == 0.0

    def test_add_invalid_quantity(self, db_path):
        """Test that invalid input is reported with exit code 1."""
        assert add_purchase(quantity="0") == 1
        assert stored_records(db_path) == []

    def test_add_with_photo(self, db_path, tmp_path):
        """Test that a photo is inlined into the stored record."""
        photo = tmp_path / "receipt.jpg"
        photo.write_bytes(b"\xff\xd8\xff\xe0")
        exit_code = cli.main([
            "add", "--product", "Garlic", "--quantity", "1", "--unit", "piece",
            "--location", "Metro", "--price", "2", "--photo", str(photo),
        ])
        assert exit_code == 0
        attachment = stored_records(db_path)[0].attachment
        assert attachment.content is not None
        assert attachment.read_bytes() == b"\xff\xd8\xff\xe0"

    def test_edit_keeps_id_and_recomputes_total(self, db_path):
        """Test that edit updates fields in place."""
        add_purchase()
        record_id = stored_records(db_path)[0].id

        assert cli.main(["edit", record_id, "--quantity", "2"]) == 0

        record = stored_records(db_path)[0]
        assert record.id == record_id
        assert record.total_amount == 36.8

    def test_edit_unknown_id(self, db_path):
        """Test that editing a missing record fails."""
        assert cli.main(["edit", "missing", "--quantity", "2"]) == 1

    def test_delete(self, db_path):
        """Test that delete removes the record."""
        add_purchase()
        record_id = stored_records(db_path)[0].id
        assert cli.main(["delete", record_id]) == 0
        assert stored_records(db_path) == []
        assert cli.main(["delete", record_id]) == 1

    def test_list_and_report(self, db_path, capsys):
        """Test the listing and report output."""
        add_purchase()
        capsys.readouterr()

        assert cli.main(["list", "purchases"]) == 0
        assert "Potatoes" in capsys.readouterr().out

        assert cli.main(["report"]) == 0
        out = capsys.readouterr().out
        assert "220.80" in out
        assert "Total operations: 1" in out

    def test_add_with_vanished_photo(self, db_path, tmp_path, monkeypatch):
        """Test that a photo that disappears before saving is reported, not raised."""
        gone = Attachment(
            name="gone.jpg", mime_type="image/jpeg", size=4, path=str(tmp_path / "gone.jpg")
        )
        monkeypatch.setattr(cli.Attachment, "from_file", lambda path: gone)
        exit_code = cli.main([
            "add", "--product", "Garlic", "--quantity", "1", "--unit", "piece",
            "--location", "Metro", "--photo", "gone.jpg",
        ])
        assert exit_code == 1
        assert stored_records(db_path) == []

    @pytest.mark.parametrize("value", ["nan", "inf", "-inf"])
    def test_add_non_finite_quantity(self, db_path, value):
        """Test that nan and inf quantities are refused."""
        assert add_purchase(quantity=value) == 1
        assert stored_records(db_path) == []

    def test_edit_refused_during_batch(self, db_path):
        """Test that edits wait for a batch held by another store on the same file."""
        add_purchase()
        record_id = stored_records(db_path)[0].id
        batch_side = RecordStore(SqliteKeyValueStore(str(db_path)))
        with batch_side.exclusive():
            assert cli.main(["edit", record_id, "--quantity", "2"]) == 1
        assert stored_records(db_path)[0].quantity == 12

    def test_clear_requires_confirmation(self, db_path):
        """Test that clear refuses without --yes."""
        add_purchase()
        assert cli.main(["clear"]) == 1
        assert len(stored_records(db_path)) == 1
        assert cli.main(["clear", "--yes"]) == 0
        assert stored_records(db_path) == []


class TestSendCommand:
    """Tests for the send command."""

    def test_send_success(self, db_path, monkeypatch, capsys):
        """Test that a successful batch empties the category."""
        add_purchase()
        response = MagicMock()
        response.status_code = 200
        post = MagicMock(return_value=response)
        monkeypatch.setattr(requests.Session, "post", post)

        assert cli.main(["send", "purchases"]) == 0

        assert "All 1 records sent successfully" in capsys.readouterr().out
        assert stored_records(db_path) == []
        assert post.call_args[0][0] == COLLECTOR

    def test_send_failure_keeps_records(self, db_path, monkeypatch, capsys):
        """Test that failed records stay pending and the exit code is 1."""
        add_purchase()
        post = MagicMock(side_effect=requests.ConnectionError("refused"))
        monkeypatch.setattr(requests.Session, "post", post)

        assert cli.main(["send", "purchases"]) == 1

        assert "Sent: 0. Failed: 1" in capsys.readouterr().out
        assert len(stored_records(db_path)) == 1

    def test_send_nothing(self, db_path, monkeypatch, capsys):
        """Test that an empty category sends nothing."""
        post = MagicMock()
        monkeypatch.setattr(requests.Session, "post", post)

        assert cli.main(["send", "unloadings"]) == 0

        assert "Nothing to send" in capsys.readouterr().out
        post.assert_not_called()


class TestParser:
    """Tests for argument parsing."""

    def test_unknown_unit_rejected(self):
        """Test that units outside the catalog are refused by argparse."""
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([
                "add", "--product", "X", "--quantity", "1", "--unit", "tons", "--location", "Metro",
            ])

    def test_send_requires_category(self):
        """Test that send needs a category."""
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["send"])
