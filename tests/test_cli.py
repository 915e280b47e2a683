"""
Tests for the command line entry point (no browser is launched).
"""

from auction_crawler.__main__ import EXIT_FATAL, build_parser, main


class TestArguments:

    def test_env_defaults(self, monkeypatch):
        monkeypatch.setenv("SWEEP_TARGETS", "houses.json")
        monkeypatch.setenv("SWEEP_OUTPUT_DIR", "/data/sweep")
        args = build_parser().parse_args([])
        assert args.targets == "houses.json"
        assert args.output_dir == "/data/sweep"
        assert args.storage_state is None

    def test_flags(self):
        args = build_parser().parse_args([
            "--targets", "h.csv", "--targets-per-run", "0", "--no-pacing",
            "--max-payload-kb", "500", "--growth-factor", "1.35", "-v",
        ])
        assert args.targets_per_run == 0
        assert args.no_pacing
        assert args.max_payload_kb == 500.0
        assert args.growth_factor == 1.35
        assert args.verbose


class TestExitStatus:

    def test_missing_target_list(self, monkeypatch):
        monkeypatch.delenv("SWEEP_TARGETS", raising=False)
        assert main([]) == EXIT_FATAL

    def test_unreadable_target_list(self, tmp_path):
        assert main(["--targets", str(tmp_path / "missing.json")]) == EXIT_FATAL

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "houses.json"
        path.write_text('[{"name": "HouseA"}]')
        assert main(["--targets", str(path), "--pace-min", "30", "--pace-max", "5"]) == EXIT_FATAL

    def test_target_list_of_bare_names(self, tmp_path):
        path = tmp_path / "houses.json"
        path.write_text('["HouseA", "HouseB"]')
        assert main(["--targets", str(path)]) == EXIT_FATAL
