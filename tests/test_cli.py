import pytest

import monitor_auctions
from auctionwatch.db import Database
from auctionwatch.models import ListingRecord


def run_cli(tmp_path, *args):
    db_url = f"sqlite:///{tmp_path / 'cli.db'}"
    return monitor_auctions.main(["--database-url", db_url, *args])


def test_init_creates_database(tmp_path):
    assert run_cli(tmp_path, "--init") == 0
    assert (tmp_path / "cli.db").exists()


def test_add_monitor_and_deactivate(tmp_path):
    assert run_cli(
        tmp_path,
        "--add-monitor",
        "--name", "Notebooks",
        "--url", "https://api.example.com/offers",
        "--keyword", "notebook+dell",
        "--keyword", "thinkpad",
        "--mode", "AND",
        "--interval", "10",
    ) == 0

    database = Database(path=tmp_path / "cli.db")
    [config] = database.list_monitors()
    assert config.keywords == ("notebook+dell", "thinkpad")
    assert config.keyword_mode == "AND"
    assert config.interval_minutes == 10

    assert run_cli(tmp_path, "--deactivate", str(config.id)) == 0
    assert database.list_active_monitors() == []
    assert run_cli(tmp_path, "--deactivate", "999") == 1


def test_add_monitor_rejects_invalid_keywords(tmp_path):
    with pytest.raises(SystemExit):
        run_cli(
            tmp_path,
            "--add-monitor",
            "--name", "Bad",
            "--url", "https://api.example.com/offers",
            "--keyword", "a+b~c",
        )


def test_set_telegram_stores_subscription(tmp_path):
    assert run_cli(
        tmp_path,
        "--set-telegram",
        "--bot-token", "123:abc",
        "--chat-id", "42",
        "--no-price-changes",
    ) == 0

    subscription = Database(path=tmp_path / "cli.db").get_subscription()
    assert subscription.chat_id == "42"
    assert subscription.notify_new_items is True
    assert subscription.notify_price_changes is False


def test_run_now_unknown_monitor_fails(tmp_path):
    assert run_cli(tmp_path, "--run-now", "7") == 1


def test_export_writes_workbook(tmp_path):
    export_path = tmp_path / "out.xlsx"
    assert run_cli(tmp_path, "--export", str(export_path)) == 0
    assert export_path.exists()


def add_monitor(tmp_path, name="Notebooks", *extra):
    assert run_cli(
        tmp_path,
        "--add-monitor",
        "--name", name,
        "--url", "https://api.example.com/offers",
        *extra,
    ) == 0
    return Database(path=tmp_path / "cli.db").list_monitors()[-1]


def seed_listing(tmp_path, offer_id="42", price=1000.0):
    database = Database(path=tmp_path / "cli.db")
    database.initialize()
    return database.create_listing(
        ListingRecord(
            offer_id=offer_id,
            title=f"Dell Notebook {offer_id}",
            description="",
            price=price,
            url=f"https://exchange.superbid.net/leilao/{offer_id}",
            monitor_id=1,
        )
    )


def test_add_monitor_uses_defaults(tmp_path):
    config = add_monitor(tmp_path)
    assert config.keyword_mode == "OR"
    assert config.interval_minutes == 5
    assert config.keywords == ()


def test_activate_restores_deactivated_monitor(tmp_path):
    config = add_monitor(tmp_path)
    database = Database(path=tmp_path / "cli.db")

    assert run_cli(tmp_path, "--deactivate", str(config.id)) == 0
    assert database.list_active_monitors() == []
    assert run_cli(tmp_path, "--activate", str(config.id)) == 0
    assert [active.id for active in database.list_active_monitors()] == [config.id]
    assert run_cli(tmp_path, "--activate", "999") == 1


def test_edit_monitor_changes_only_given_options(tmp_path):
    config = add_monitor(tmp_path, "Notebooks", "--keyword", "notebook+dell", "--interval", "10")
    database = Database(path=tmp_path / "cli.db")

    assert run_cli(
        tmp_path, "--edit-monitor", str(config.id), "--mode", "AND", "--interval", "30"
    ) == 0
    edited = database.get_monitor(config.id)
    assert edited.name == "Notebooks"
    assert edited.keywords == ("notebook+dell",)
    assert edited.keyword_mode == "AND"
    assert edited.interval_minutes == 30

    assert run_cli(tmp_path, "--edit-monitor", str(config.id), "--keyword", "thinkpad") == 0
    assert database.get_monitor(config.id).keywords == ("thinkpad",)
    assert run_cli(tmp_path, "--edit-monitor", str(config.id), "--clear-keywords") == 0
    assert database.get_monitor(config.id).keywords == ()
    assert run_cli(tmp_path, "--edit-monitor", "999", "--name", "ghost") == 1


def test_edit_monitor_rejects_invalid_changes(tmp_path):
    config = add_monitor(tmp_path)
    with pytest.raises(SystemExit):
        run_cli(tmp_path, "--edit-monitor", str(config.id), "--interval", "0")
    with pytest.raises(SystemExit):
        run_cli(tmp_path, "--edit-monitor", str(config.id), "--keyword", "a+b~c")
    with pytest.raises(SystemExit):
        run_cli(tmp_path, "--edit-monitor", str(config.id))
    assert Database(path=tmp_path / "cli.db").get_monitor(config.id) == config


def test_delete_monitor(tmp_path):
    config = add_monitor(tmp_path)
    assert run_cli(tmp_path, "--delete-monitor", str(config.id)) == 0
    assert Database(path=tmp_path / "cli.db").get_monitor(config.id) is None
    assert run_cli(tmp_path, "--delete-monitor", str(config.id)) == 1


def test_listings_archive_and_unarchive(tmp_path, caplog):
    kept = seed_listing(tmp_path, "kept")
    moved = seed_listing(tmp_path, "moved")
    database = Database(path=tmp_path / "cli.db")

    assert run_cli(tmp_path, "--archive", str(moved)) == 0
    assert [record.id for record in database.fetch_listings(archived=True)] == [moved]

    caplog.clear()
    with caplog.at_level("INFO"):
        assert run_cli(tmp_path, "--listings") == 0
    assert "Dell Notebook kept" in caplog.text
    assert "Dell Notebook moved" not in caplog.text

    caplog.clear()
    with caplog.at_level("INFO"):
        assert run_cli(tmp_path, "--listings", "--archived") == 0
    assert "Dell Notebook moved" in caplog.text
    assert "Dell Notebook kept" not in caplog.text

    assert run_cli(tmp_path, "--unarchive", str(moved)) == 0
    assert sorted(record.id for record in database.fetch_listings()) == [kept, moved]
    assert run_cli(tmp_path, "--archive", "999") == 1


def test_history_shows_price_changes(tmp_path, caplog):
    listing_id = seed_listing(tmp_path, price=1000.0)
    database = Database(path=tmp_path / "cli.db")
    database.apply_price_change(listing_id, 1000.0, 1200.0)
    database.apply_price_change(listing_id, 1200.0, 950.0)

    with caplog.at_level("INFO"):
        assert run_cli(tmp_path, "--history", str(listing_id)) == 0

    assert "2 price change(s) for Dell Notebook 42" in caplog.text
    assert "1000.00 -> 1200.00" in caplog.text
    assert "1200.00 -> 950.00" in caplog.text
    assert run_cli(tmp_path, "--history", "999") == 1


@pytest.mark.parametrize("args, expected", [(("--list",), 0), (("--run-now", "7"), 1)])
def test_http_session_is_closed_after_command(tmp_path, monkeypatch, args, expected):
    closed = []
    monkeypatch.setattr(monitor_auctions.SuperbidClient, "close", lambda self: closed.append(self))

    assert run_cli(tmp_path, *args) == expected
    assert len(closed) == 1
