import io
import json

import pytest

from helpers import example_runs
from pathtraceroute import Console, build_parser, main
from ptroute.artifacts import write_json
from ptroute.image_out import is_valid_png
from ptroute.model import TraceFile


@pytest.fixture
def traces_path(tmp_path):
    path = tmp_path / "traces.json"
    write_json(path, TraceFile(runs=example_runs()).to_dict())
    return path


class TestStandaloneStages:
    def test_build_layout_render_chain(self, tmp_path, traces_path):
        graph = tmp_path / "graph.json"
        scene = tmp_path / "scene.json"
        image = tmp_path / "render.png"

        assert main(["build", "--in", str(traces_path), "--out", str(graph)]) == 0
        assert main(["layout", "--in", str(graph), "--out", str(scene), "--seed", "4"]) == 0
        assert main(
            [
                "render",
                "--in",
                str(scene),
                "--out",
                str(image),
                "--width",
                "20",
                "--height",
                "12",
                "--spp",
                "1",
                "--bounces",
                "1",
                "--threads",
                "1",
                "--progress-every",
                "0",
            ]
        ) == 0

        assert json.loads(scene.read_text())["seed"] == 4
        assert is_valid_png(image, 20, 12)

    def test_missing_input_is_an_error(self, tmp_path, capsys):
        code = main(["build", "--in", str(tmp_path / "nope.json"), "--out", str(tmp_path / "graph.json")])
        assert code == 1
        assert "error: failed to parse" in capsys.readouterr().err

    def test_invalid_option_value_is_an_error(self, tmp_path, capsys):
        code = main(["render", "--in", str(tmp_path / "scene.json"), "--spp", "0"])
        assert code == 1
        assert "spp must be at least 1" in capsys.readouterr().err

    def test_run_refuses_existing_directory(self, tmp_path, capsys):
        (tmp_path / "graph.json").write_text("{}")
        code = main(["run", "--target", "1.1.1.1", "--out-dir", str(tmp_path), "--plain"])
        assert code == 1
        err = capsys.readouterr().err
        assert "[BOOT] PathTraceRoute Loader" in err
        assert "--resume or --force" in err


class TestParser:
    def test_run_defaults(self):
        args = build_parser().parse_args(["run", "--target", "a", "--target", "b"])
        assert args.target_list == ["a", "b"]
        assert args.spp == 64
        assert args.threads == 0
        assert args.out_dir is None
        assert not args.resume and not args.force

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestConsole:
    def test_plain_step_lines(self):
        stream = io.StringIO()
        console = Console(plain=True, stream=stream)
        console.step("ok", "trace", "out/traces.json")
        console.step("skip", "layout", "out/scene.json")
        console.done("elapsed 1.0s")
        assert stream.getvalue().splitlines() == [
            "[OK ] trace   out/traces.json",
            "[SKIP] layout  out/scene.json",
            "[DONE] elapsed 1.0s",
        ]

    def test_colored_tags(self):
        stream = io.StringIO()
        Console(stream=stream).step("fail", "render", "boom")
        assert stream.getvalue().startswith("\x1b[31m[FAIL]\x1b[0m render")
