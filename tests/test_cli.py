"""
Tests for the command line interface (mock backend).
"""

import keyring
import pytest
import yaml
from typer.testing import CliRunner

from salonagenda import __version__
from salonagenda.cli.app import app

runner = CliRunner()


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "backend": {"url": "https://example.supabase.co"},
                "tenant_id": "tenant-1",
                "timezone": "Europe/Amsterdam",
            }
        ),
        encoding="utf-8",
    )
    return str(path)


def _invoke(*args):
    return runner.invoke(app, list(args))


class TestReadCommands:
    """Tests for the read-only commands."""

    def test_version(self):
        result = _invoke("version")

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_hours(self, config_path):
        result = _invoke("hours", "--config", config_path, "--mock")

        assert result.exit_code == 0
        assert "Thursday" in result.output
        assert "21:00" in result.output
        assert "closed" in result.output

    def test_slots(self, config_path):
        result = _invoke("slots", "2025-03-10", "--config", config_path, "--mock")

        assert result.exit_code == 0
        assert "outside_hours" in result.output
        assert "break" in result.output

    def test_slots_on_closed_day(self, config_path):
        result = _invoke("slots", "2025-03-16", "--config", config_path, "--mock", "--granularity", "60")

        assert result.exit_code == 0
        assert "closed" in result.output

    def test_agenda(self, config_path):
        result = _invoke("agenda", "2025-03-10", "--config", config_path, "--mock")

        assert result.exit_code == 0
        assert "bk-1001" in result.output
        assert "bk-1006" in result.output
        assert "bk-1007" not in result.output

    def test_agenda_reports_folded_appointments(self, tmp_path):
        path = tmp_path / "narrow.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "backend": {"url": "https://example.supabase.co"},
                    "tenant_id": "tenant-1",
                    "timezone": "Europe/Amsterdam",
                    "scheduling": {"max_visible_columns": 1},
                }
            ),
            encoding="utf-8",
        )

        result = _invoke("agenda", "2025-03-10", "--config", str(path), "--mock")

        assert result.exit_code == 0
        assert "09:00: +1 more" in result.output

    def test_check_conflict(self, config_path):
        result = _invoke("check", "2025-03-10T09:15", "30", "--config", config_path, "--mock")

        assert result.exit_code == 2
        assert "unavailable" in result.output
        assert "bk-1001" in result.output

    def test_check_free(self, config_path):
        result = _invoke("check", "2025-03-10T17:00", "30", "--config", config_path, "--mock")

        assert result.exit_code == 0
        assert "Free" in result.output

    def test_check_for_one_staff_member(self, config_path):
        result = _invoke(
            "check", "2025-03-10T14:30", "30", "--staff", "st-anna", "--config", config_path, "--mock"
        )

        assert result.exit_code == 0

    def test_bookable(self, config_path):
        result = _invoke("bookable", "2025-03-11", "60", "--include-past", "--config", config_path, "--mock")

        assert result.exit_code == 0
        assert "10:00" in result.output
        assert "09:00" not in result.output

    def test_bookable_outside_advance_window(self, config_path):
        unbounded = _invoke("bookable", "2099-03-10", "60", "--config", config_path, "--mock")
        bounded = _invoke(
            "bookable", "2099-03-10", "60", "--max-advance-days", "7", "--config", config_path, "--mock"
        )

        assert unbounded.exit_code == 0
        assert "09:00" in unbounded.output
        assert bounded.exit_code == 0
        assert "No free start times" in bounded.output


class TestEditCommands:
    """Tests for move and resize."""

    def test_move(self, config_path):
        result = _invoke("move", "bk-1006", "2025-03-10T17:00", "--config", config_path, "--mock")

        assert result.exit_code == 0
        assert "Moved bk-1006" in result.output
        assert "2025-03-10 17:00" in result.output

    def test_move_onto_booking(self, config_path):
        result = _invoke("move", "bk-1006", "2025-03-10T14:30", "--config", config_path, "--mock")

        assert result.exit_code == 2
        assert "This time slot is unavailable." in result.output
        assert "bk-1005" in result.output

    def test_move_unknown_appointment(self, config_path):
        result = _invoke("move", "bk-9999", "2025-03-10T17:00", "--config", config_path, "--mock")

        assert result.exit_code == 1

    def test_resize(self, config_path):
        result = _invoke(
            "resize", "bk-1008", "2025-03-11T10:30", "--edge", "bottom", "--config", config_path, "--mock"
        )

        assert result.exit_code == 0
        assert "Resized bk-1008" in result.output
        assert "90 min" in result.output


class TestErrors:
    """Tests for configuration and input errors."""

    def test_missing_config(self, tmp_path):
        result = _invoke("hours", "--config", str(tmp_path / "missing.yaml"), "--mock")

        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_invalid_date(self, config_path):
        result = _invoke("slots", "10-03-2025", "--config", config_path, "--mock")

        assert result.exit_code == 1

    def test_missing_api_key(self, config_path, monkeypatch):
        monkeypatch.setattr(keyring, "get_password", lambda service, username: None)
        monkeypatch.setenv("HOME", str(config_path).rsplit("/", 1)[0])

        result = _invoke("hours", "--config", config_path)

        assert result.exit_code == 1
        assert "set-key" in result.output


def test_set_key(config_path, monkeypatch):
    """The key is stored for the configured backend and tenant."""
    stored = {}
    monkeypatch.setattr(keyring, "set_password", lambda s, u, p: stored.update({(s, u): p}))

    result = _invoke("set-key", "--config", config_path, "--api-key", "secret")

    assert result.exit_code == 0
    assert stored == {("salonagenda", "https://example.supabase.co:tenant-1"): "secret"}
