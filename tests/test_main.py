import os

import pytest

from main import BindingGenerator, check_artifacts, main, write_artifacts
from out_types import DependencyCycleError


def _run(args):
    with pytest.raises(SystemExit) as exc_info:
        main(args)
    return exc_info.value.code


def _cli_args(tmp_path, header, *extra):
    return [
        header,
        "-o", str(tmp_path / "generated"),
        "--exports", str(tmp_path / "makefile-exports.txt"),
        *extra,
    ]


def _read(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


# --- Emitters ---

def test_constants_grouped_and_rendered(generator):
    text = generator.generate_constants()
    lines = text.splitlines()
    assert lines[0] == "# Swiss Ephemeris constants"
    assert lines[1] == "# Generated from swephexp_sample.h by swephbindgen. Do not edit."
    assert lines[3] == "# CALENDAR"
    assert lines[4] == "SE_JUL_CAL = 0"
    assert "SEFLG_JPLEPH = 1  # use JPL ephemeris" in lines
    assert "SEFLG_ASTROMETRIC = (SEFLG_NOABERR | SEFLG_NOGDEFL)  # astrometric position" in lines
    assert "SEFLG_EQUATORIAL = (2 * 1024)  # equatorial positions are wanted" in lines
    assert "SE_VARUNA = (SE_AST_OFFSET + 20000)" in lines
    assert "SE_DELTAT_AUTOMATIC = (-1E-10)" in lines
    assert "SE_MODEL_DELTAT" not in text
    assert "SE_MODEL_PREC_LONGTERM" not in text
    assert "SE_STARFILE_OLD" not in text


def test_constants_follow_category_order(generator):
    lines = generator.generate_constants().splitlines()
    headings = [line[2:] for line in lines if line.startswith("# ")][2:]
    assert headings[:4] == ["CALENDAR", "PLANETS", "FICTITIOUS PLANETS", "OFFSETS"]
    assert headings.index("CALC FLAGS") < headings.index("ECLIPSE")


def test_generated_constants_execute(generator, load_generated):
    constants = load_generated(generator.generate_constants())
    assert constants.SE_VARUNA == 30000
    assert constants.SEFLG_EPHMASK == 7
    assert constants.SEFLG_DEFAULTEPH == constants.SEFLG_SWIEPH
    assert constants.SE_ECL_ALLTYPES_SOLAR == 7
    assert constants.SE_TIDAL_DEFAULT == -25.80
    assert constants.SE_ECL_NUT == -1


def test_raw_interface(generator, load_generated):
    text = generator.generate_functions()
    assert "class SwissEphRaw(Protocol):" in text
    assert "    # Core Calculations" in text
    assert ("    def swe_calc_ut(self, tjd_ut: float, ipl: int, iflag: int, xx: int, serr: int)"
            " -> int: ...") in text
    assert "    def swe_set_ephe_path(self, path: int) -> None: ..." in text
    assert "    def swe_get_planet_name(self, ipl: int, spname: int) -> int: ..." in text
    # groups follow category order, not declaration order
    assert text.index("def swe_calc(") < text.index("def swe_heliacal_ut(")
    module = load_generated(text)
    assert hasattr(module.SwissEphRaw, "swe_foo_bar")


def test_friendly_exports(generator, friendly):
    assert "SwissEph" in friendly.__all__
    assert "PlanetPosition" in friendly.__all__
    for name in friendly.__all__:
        assert hasattr(friendly, name)


def test_friendly_has_a_method_per_routine(generator, friendly):
    for _, config in generator.wrappers:
        assert callable(getattr(friendly.SwissEph, config.friendly_name))


def test_index_module(generator):
    assert generator.generate_index().splitlines()[2:] == [
        "from .constants import *  # noqa: F401,F403",
        "from .functions import SwissEphRaw  # noqa: F401",
        "from .friendly import *  # noqa: F401,F403",
    ]


def test_exports(generator):
    text = generator.generate_exports()
    lines = text.splitlines()
    assert lines[0] == "# Add this to Makefile.wasm EXPORTED_FUNCTIONS"
    assert lines[1].startswith("EXPORTED_FUNCTIONS='[\"_malloc\", \"_free\", \"_swe_heliacal_ut\", \"_swe_calc\"")
    assert lines[1].endswith("\"_swe_foo_bar\"]'")
    assert lines[-1] == "# Function count: 16"
    assert "_swe_version" not in text


def test_render_is_deterministic(sample_header_path, tmp_path):
    first = BindingGenerator()
    first.parse_header(sample_header_path)
    second = BindingGenerator()
    second.parse_header(sample_header_path)
    out = str(tmp_path)
    assert first.render_artifacts(out, "exports.txt") == second.render_artifacts(out, "exports.txt")


def test_cycle_policy_reaches_resolver():
    gen = BindingGenerator(cycles="error")
    with pytest.raises(DependencyCycleError):
        gen.parse_header_text("#define SE_A SE_B\n#define SE_B SE_A\n")


def test_constant_values_follow_c_arithmetic(load_generated):
    gen = BindingGenerator()
    gen.parse_header_text("#define SE_HALF (-7 / 2)\n#define SE_MASKED (1 < 2 | 3)\n")
    constants = load_generated(gen.generate_constants())
    assert constants.SE_HALF == -3
    assert constants.SE_MASKED == 3


def test_missing_header():
    with pytest.raises(FileNotFoundError):
        BindingGenerator().parse_header("/nonexistent/swephexp.h")


# --- Writing ---

def test_write_artifacts_creates_directories(tmp_path):
    target = tmp_path / "a" / "b" / "out.py"
    written = write_artifacts({str(target): "X = 1\n"})
    assert written == [str(target)]
    assert _read(target) == "X = 1\n"
    assert os.listdir(target.parent) == ["out.py"]


def test_write_artifacts_skips_unchanged(tmp_path):
    target = tmp_path / "out.py"
    target.write_text("X = 1\n", encoding="utf-8")
    assert write_artifacts({str(target): "X = 1\n"}) == []


def test_write_artifacts_writes_nothing_when_staging_fails(tmp_path):
    good = tmp_path / "good.py"
    blocked = tmp_path / "blocker"
    blocked.write_text("a file, not a directory", encoding="utf-8")
    with pytest.raises(OSError):
        write_artifacts({str(good): "X = 1\n", str(blocked / "bad.py"): "Y = 2\n"})
    assert not good.exists()
    assert sorted(os.listdir(tmp_path)) == ["blocker"]


def test_write_artifacts_restores_files_when_a_move_fails(tmp_path, monkeypatch):
    existing = tmp_path / "constants.py"
    existing.write_text("OLD = 1\n", encoding="utf-8")
    fresh = tmp_path / "functions.py"
    real_replace = os.replace
    moves = []

    def failing_replace(src, dst):
        if moves:
            raise OSError("disk full")
        moves.append(dst)
        real_replace(src, dst)

    monkeypatch.setattr(os, "replace", failing_replace)
    with pytest.raises(OSError, match="disk full"):
        write_artifacts({str(existing): "NEW = 1\n", str(fresh): "X = 1\n"})
    assert moves == [str(existing)]
    assert _read(existing) == "OLD = 1\n"
    assert sorted(os.listdir(tmp_path)) == ["constants.py"]


def test_check_artifacts_reports_drift(tmp_path, capsys):
    target = tmp_path / "out.py"
    target.write_text("X = 1\n", encoding="utf-8")
    assert check_artifacts({str(target): "X = 1\n"}) == []
    assert check_artifacts({str(target): "X = 2\n"}) == [str(target)]
    out = capsys.readouterr().out
    assert "-X = 1" in out
    assert "+X = 2" in out


# --- CLI ---

def test_cli_generates_all_artifacts(tmp_path, sample_header_path, capsys):
    main(_cli_args(tmp_path, sample_header_path))
    generated = tmp_path / "generated"
    assert sorted(os.listdir(generated)) == ["__init__.py", "constants.py", "friendly.py", "functions.py"]
    assert (tmp_path / "makefile-exports.txt").exists()
    out = capsys.readouterr().out
    assert "--- Parsing Summary ---" in out
    assert "Functions: 16, Wrappers: 16" in out
    assert "Dropped: 2" in out


def test_cli_is_idempotent(tmp_path, sample_header_path, capsys):
    main(_cli_args(tmp_path, sample_header_path))
    before = {name: _read(tmp_path / "generated" / name) for name in os.listdir(tmp_path / "generated")}
    capsys.readouterr()

    main(_cli_args(tmp_path, sample_header_path))
    after = {name: _read(tmp_path / "generated" / name) for name in os.listdir(tmp_path / "generated")}
    assert before == after
    assert "Generated " not in capsys.readouterr().out


def test_cli_check_mode(tmp_path, sample_header_path):
    assert _run(_cli_args(tmp_path, sample_header_path, "--check")) == 1
    assert not (tmp_path / "generated").exists()

    main(_cli_args(tmp_path, sample_header_path))
    main(_cli_args(tmp_path, sample_header_path, "--check"))

    (tmp_path / "generated" / "constants.py").write_text("stale\n", encoding="utf-8")
    assert _run(_cli_args(tmp_path, sample_header_path, "--check")) == 1


def test_cli_strict_fails_without_output(tmp_path, sample_header_path, capsys):
    assert _run(_cli_args(tmp_path, sample_header_path, "--strict")) == 1
    assert "An error occurred:" in capsys.readouterr().err
    assert not (tmp_path / "generated").exists()
    assert not (tmp_path / "makefile-exports.txt").exists()


def test_cli_bad_config_fails_without_output(tmp_path, sample_header_path, capsys):
    config = tmp_path / "bad.yaml"
    config.write_text("functions:\n  swe_calc_ut:\n    returns: sometimes\n", encoding="utf-8")
    assert _run(_cli_args(tmp_path, sample_header_path, "--config", str(config))) == 1
    assert "unknown return mode" in capsys.readouterr().err
    assert not (tmp_path / "generated").exists()


def test_cli_missing_header(tmp_path, capsys):
    assert _run(_cli_args(tmp_path, str(tmp_path / "missing.h"))) == 1
    assert "Header file not found" in capsys.readouterr().err


def test_cli_verbose_prints_debug_lines(tmp_path, sample_header_path, capsys):
    main(_cli_args(tmp_path, sample_header_path, "--verbose"))
    assert "DEBUG: Dropping SE_HELIACAL_SETTING_STRANGE" in capsys.readouterr().out
