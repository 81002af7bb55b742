"""
CLI smoke tests
"""

import pytest
import yaml
from typer.testing import CliRunner

from preprocessor.cli import preprocess_commands
from tests.conftest import TEST_SHOP

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_settings(monkeypatch, settings, restore_logging):
    monkeypatch.setattr(preprocess_commands, "get_settings", lambda: settings)
    return settings


def test_run_shop(cli_settings, shop_input):
    result = runner.invoke(preprocess_commands.app, ["run", TEST_SHOP, "--report"])

    assert result.exit_code == 0, result.output
    assert (cli_settings.output_path(TEST_SHOP) / "metadata.json").exists()
    assert (cli_settings.output_path(TEST_SHOP) / "reports" / "mapping-report.csv").exists()


def test_run_all_discovers_shops(cli_settings, shop_input):
    result = runner.invoke(preprocess_commands.app, ["run", "all", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert not cli_settings.output_path(TEST_SHOP).exists()


def test_run_strict_exits_non_zero(shop_input):
    result = runner.invoke(preprocess_commands.app, ["run", TEST_SHOP, "--strict"])
    assert result.exit_code == 1


def test_run_missing_shop():
    result = runner.invoke(preprocess_commands.app, ["run", "ghost"])
    assert result.exit_code == 1


def test_validate(shop_input):
    result = runner.invoke(preprocess_commands.app, ["validate", TEST_SHOP])

    # The malformed price fails validation
    assert result.exit_code == 1
    assert "products.json" in result.output


def test_add_rule(cli_settings):
    result = runner.invoke(preprocess_commands.app, ["add-rule", TEST_SHOP, "Zzz qqq", "Băuturi", "Apă"])

    assert result.exit_code == 0, result.output
    saved = yaml.safe_load((cli_settings.paths.shops / f"{TEST_SHOP}.yaml").read_text(encoding="utf-8"))
    assert saved[0]["pattern"] == "Zzz qqq"
    assert saved[0]["target_path"] == ["Băuturi", "Apă"]


def test_add_rule_rejects_bad_regex():
    result = runner.invoke(
        preprocess_commands.app, ["add-rule", TEST_SHOP, "([bad", "Băuturi", "--pattern-type", "regex"]
    )
    assert result.exit_code == 1


def test_categories_and_status(shop_input):
    assert runner.invoke(preprocess_commands.app, ["run", TEST_SHOP]).exit_code == 0

    categories = runner.invoke(preprocess_commands.app, ["categories"])
    assert categories.exit_code == 0, categories.output

    status = runner.invoke(preprocess_commands.app, ["status"])
    assert status.exit_code == 0, status.output
    assert TEST_SHOP in status.output


def test_clean(cli_settings, shop_input):
    runner.invoke(preprocess_commands.app, ["run", TEST_SHOP])
    assert cli_settings.output_path(TEST_SHOP).exists()

    result = runner.invoke(preprocess_commands.app, ["clean", TEST_SHOP, "--force"])

    assert result.exit_code == 0
    assert not cli_settings.output_path(TEST_SHOP).exists()
