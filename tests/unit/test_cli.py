"""Tests for the command line entry point."""

import json

import pytest
from structlog.testing import capture_logs

from servers.event_sync.__main__ import build_parser, run
from servers.event_sync.models import MatchDecision
from servers.event_sync.store import InMemoryStore
from servers.event_sync.writer import UpsertWriter


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ("TICKETMASTER_API_KEY", "SEATGEEK_CLIENT_ID", "GOOGLE_PLACES_API_KEY",
                "EVENT_SYNC_METROS", "EVENT_SYNC_STORE_PATH", "EVENT_SYNC_MAX_CONCURRENCY",
                "FACEBOOK_ACCESS_TOKEN"):
        monkeypatch.delenv(key, raising=False)
    with capture_logs():
        yield


class TestParser:
    def test_metros_repeatable(self):
        args = build_parser().parse_args(["event-sync", "--metro", "seattle", "--metro", "austin"])
        assert args.metros == ["seattle", "austin"]

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestRun:
    """End-to-end runs against a snapshot in tmp_path."""

    @pytest.mark.asyncio
    async def test_page_commands_persist(self, tmp_path, capsys):
        store = str(tmp_path / "store.json")

        assert await run(["--store", store, "pages", "add", "https://www.facebook.com/neumos",
                          "--name", "Neumos", "--metro", "seattle"]) == 0
        page = json.loads(capsys.readouterr().out)
        assert page["status"] == "pending_review"

        assert await run(["--store", store, "pages", "activate", page["id"]]) == 0
        capsys.readouterr()

        assert await run(["--store", store, "pages", "list", "--status", "active"]) == 0
        assert "Neumos" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_lifecycle_error_exit_code(self, tmp_path, capsys):
        code = await run(["--store", str(tmp_path / "store.json"), "pages", "pause", "missing"])
        assert code == 1
        assert "No social page" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_event_sync_without_credentials(self, tmp_path, capsys):
        """Keyless sources with nothing to scrape still produce a clean run."""
        store = tmp_path / "store.json"

        assert await run(["--store", str(store), "event-sync"]) == 0

        result = json.loads(capsys.readouterr().out)
        assert result["status"] == "success"
        assert set(result["per_source"]) == {"facebook", "venue_website"}
        assert json.loads(store.read_text())["run_logs"][0]["metro"] == "seattle"

    @pytest.mark.asyncio
    async def test_duplicates_empty(self, tmp_path, capsys):
        assert await run(["--store", str(tmp_path / "store.json"), "duplicates"]) == 0
        assert capsys.readouterr().out.strip() == "No likely duplicates found."

    @pytest.mark.asyncio
    async def test_invalid_settings_exit_code(self, tmp_path, capsys, monkeypatch):
        monkeypatch.setenv("EVENT_SYNC_MAX_CONCURRENCY", "0")
        store = tmp_path / "store.json"

        assert await run(["--store", str(store), "event-sync"]) == 2
        assert "invalid settings" in capsys.readouterr().err
        assert not store.exists()

    @pytest.mark.asyncio
    async def test_merge_venues_persists(self, tmp_path, capsys, crocodile):
        path = tmp_path / "store.json"
        store = InMemoryStore()
        writer = UpsertWriter(store)
        primary, _ = writer.apply_venue(crocodile, MatchDecision(rule="new"))
        duplicate, _ = writer.apply_venue(
            crocodile.model_copy(update={
                "name": "Crocodile Cafe",
                "external_source": "seatgeek",
                "external_id": "1123",
                "slug": "crocodile-cafe",
            }),
            MatchDecision(rule="new"),
        )
        store.save(path)

        assert await run(["--store", str(path), "merge-venues", primary, duplicate]) == 0

        merged = json.loads(capsys.readouterr().out)
        assert merged["external_ids"] == {"ticketmaster": "KovZpZAEkn6A", "seatgeek": "1123"}
        assert [v["id"] for v in json.loads(path.read_text())["venues"]] == [primary]

    @pytest.mark.asyncio
    async def test_merge_unknown_venue_exit_code(self, tmp_path, capsys):
        code = await run(["--store", str(tmp_path / "store.json"), "merge-venues", "a", "b"])
        assert code == 1
        assert "primary venue not found" in capsys.readouterr().err
