"""CLI argument handling and local project commands."""

import json

from typer.testing import CliRunner

from promopipe.cli.commands import app

runner = CliRunner()


def test_generate_requires_url_or_description():
    result = runner.invoke(app, ["generate"])

    assert result.exit_code == 1
    assert "Either URL or description is required" in result.output


def test_continue_rejects_script_without_scenes(tmp_path):
    script_file = tmp_path / "script.json"
    product_file = tmp_path / "product.json"
    script_file.write_text(json.dumps({"totalDurationFrames": 0, "scenes": []}))
    product_file.write_text(json.dumps({"name": "Notely"}))

    result = runner.invoke(app, ["continue", str(script_file), str(product_file)])

    assert result.exit_code == 1
    assert "at least one scene" in result.output


def test_status_rejects_malformed_id():
    result = runner.invoke(app, ["status", "not-a-uuid"])

    assert result.exit_code == 1
    assert "Invalid UUID" in result.output
