import tempfile
from pathlib import Path

from click.testing import CliRunner

from laser_contacts import PropertySet
from laser_contacts.cli import main

SMALL = PropertySet({"size": [4, 2], "communities_per_unit": 4, "agents_per_community": 500, "initial_infected": 20})


def test_main_verbose():
    with tempfile.TemporaryDirectory() as tmpdir:
        filename = Path(tmpdir) / "params.json"
        SMALL.save(filename)
        result = CliRunner().invoke(main, ["--params", str(filename), "--nticks", "2", "--seed", "42"])

    assert result.exit_code == 0, result.output
    assert "Created 4,000 agents" in result.output
    assert "tick    1 default:" in result.output
    assert "infected=20" in result.output

    return


def test_main_quiet():
    with tempfile.TemporaryDirectory() as tmpdir:
        filename = Path(tmpdir) / "params.json"
        SMALL.save(filename)
        result = CliRunner().invoke(main, ["--params", str(filename), "--nticks", "1", "--quiet", "--concurrent"])

    assert result.exit_code == 0, result.output
    assert "expected new infections on final tick" in result.output
    assert "never=" not in result.output

    return


def test_main_bad_parameters():
    result = CliRunner().invoke(main, ["--nticks", "-1", "--quiet"])
    assert result.exit_code != 0
    assert "nticks must be non-negative" in result.output

    return


def test_main_missing_params_file():
    result = CliRunner().invoke(main, ["--params", "no-such-params.json"])
    assert result.exit_code != 0

    return
