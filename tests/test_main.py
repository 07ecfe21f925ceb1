import asyncio

import pytest

from dbmaker_manager.app import DbMakerManagerApp
from dbmaker_manager.main import build_parser, main
from dbmaker_manager.ui.screens.create_wizard import parse_overrides
from dbmaker_manager.ui.screens.main_screen import MainScreen


def test_templates_command_lists_packaged_and_builtin_keys(capsys):
    main(["templates"])

    keys = capsys.readouterr().out.split()
    assert {"mongodb", "mysql", "postgresql", "redis"} <= set(keys)
    assert keys == sorted(keys)


def test_console_is_the_default_command():
    args = build_parser().parse_args([])

    assert args.command is None


def test_parse_overrides():
    assert parse_overrides("POSTGRES_USER=app, POSTGRES_PASSWORD=a=b") == {
        "POSTGRES_USER": "app",
        "POSTGRES_PASSWORD": "a=b",
    }
    assert parse_overrides("  ") == {}


@pytest.mark.parametrize("text", ["NOEQUALS", "=value"])
def test_parse_overrides_rejects_bad_pairs(text):
    with pytest.raises(ValueError):
        parse_overrides(text)


def test_console_lists_stored_instances(manager, store):
    instance = manager.create_instance("alice", "redis", "cache")
    store.save(instance)

    async def run():
        app = DbMakerManagerApp(instance_manager=manager, store=store)
        async with app.run_test() as pilot:
            await pilot.pause()
            assert isinstance(app.screen, MainScreen)
            table = app.screen.query_one("#instance-table")
            assert table.row_count == 1
            assert app.screen.selected_instance_id == instance.id

    asyncio.run(run())
