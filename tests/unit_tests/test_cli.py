"""
Unit tests for CLI module.
"""

import unittest
from unittest.mock import MagicMock, patch

from cli import build_parser, given_options, load_config, main, run
from config import RunConfig, SiteSelectors, SlackSettings
from errors import ConfigConflict, ConfigError, MissingConfigFile


class TestParser(unittest.TestCase):
    """Test CLI argument parsing."""

    def test_defaults(self):
        args = build_parser().parse_args([])
        self.assertEqual(args.env, "dev")
        self.assertEqual(args.framework, "wordpress")
        self.assertEqual(args.backup, "all")
        self.assertIsNone(args.auto_commit)
        self.assertIsNone(args.auto_deploy)
        self.assertEqual(args.poll_interval, 3)
        self.assertEqual(args.command_timeout, 900)

    def test_parser_with_all_options(self):
        """Test parser handles all command-line options."""
        args = build_parser().parse_args(
            [
                "--team",
                "--org", "org-1",
                "--name", "^shop",
                "--owner", "me",
                "--exclude-sites", "old",
                "--cached",
                "--env", "test",
                "--framework", "drupal",
                "--backup", "db",
                "--upstream",
                "--packages", "views",
                "--exclude", "ctools",
                "--major-update",
                "--security-only",
                "--auto-commit", "Monthly",
                "--auto-deploy", "live",
                "--confirm",
                "--report",
                "--machine-token", "tok",
                "--verbose",
            ]
        )
        self.assertTrue(args.team)
        self.assertEqual(args.org, "org-1")
        self.assertEqual(args.framework, "drupal")
        self.assertEqual(args.auto_commit, "Monthly")
        self.assertEqual(args.auto_deploy, "live")
        self.assertTrue(args.report)

    def test_bare_auto_flags_are_true(self):
        args = build_parser().parse_args(["--auto-commit", "--auto-deploy"])
        self.assertIs(args.auto_commit, True)
        self.assertIs(args.auto_deploy, True)

    def test_invalid_framework(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["--framework", "joomla"])


class TestLoadConfig(unittest.TestCase):
    """Test choosing between flags and a config file."""

    def setUp(self):
        self.parser = build_parser()

    def test_given_options(self):
        args = self.parser.parse_args(["--team", "--verbose"])
        self.assertEqual(sorted(given_options(self.parser, args)), ["team", "verbose"])

    def test_config_file_with_flags_conflicts(self):
        args = self.parser.parse_args(["--config-file", "fleet.yml", "--team"])
        with self.assertRaises(ConfigConflict):
            load_config(self.parser, args)

    @patch("cli.RunConfig.from_file")
    def test_config_file_with_client_options(self, mock_from_file):
        args = self.parser.parse_args(
            ["-c", "fleet.yml", "--verbose", "--machine-token", "tok", "--poll-interval", "5"]
        )
        load_config(self.parser, args)
        mock_from_file.assert_called_once_with("fleet.yml", args)

    @patch("cli.RunConfig.from_file")
    def test_no_flags_uses_default_file(self, mock_from_file):
        args = self.parser.parse_args([])
        load_config(self.parser, args)
        mock_from_file.assert_called_once_with("sites-config.yml", args)

    def test_missing_default_file(self):
        args = self.parser.parse_args(["--verbose"])
        with patch("config.os.path.isfile", return_value=False):
            with self.assertRaises(MissingConfigFile):
                load_config(self.parser, args)

    def test_flags_mode(self):
        args = self.parser.parse_args(["--team", "--report", "--machine-token", "tok"])
        config = load_config(self.parser, args)
        self.assertEqual(config.mode, "flags")
        self.assertTrue(config.selectors.team_only)
        self.assertTrue(config.report_only)


class TestRun(unittest.TestCase):
    """Test wiring of a run."""

    def test_requires_machine_token(self):
        with self.assertRaises(ConfigError):
            run(RunConfig(mode="flags"))

    @patch("cli.FleetUpdater")
    @patch("cli.build_queue")
    @patch("cli.FleetResolver")
    @patch("cli.SiteInventory")
    @patch("cli.PantheonRestClient")
    def test_flags_mode_resolves_fleet(
        self, mock_client_class, mock_inventory_class, mock_resolver_class,
        mock_build_queue, mock_updater_class,
    ):
        mock_client = mock_client_class.return_value
        mock_client.user_id = "user-1"
        mock_resolver_class.return_value.resolve.return_value = ["site"]
        mock_updater_class.return_value.run.return_value = {"failed": 0}
        config = RunConfig(
            mode="flags",
            selectors=SiteSelectors(team_only=True),
            machine_token="tok",
            cached=True,
        )

        stats = run(config)

        self.assertEqual(stats, {"failed": 0})
        mock_client.authenticate.assert_called_once()
        mock_inventory_class.return_value.load.assert_called_once_with(cached=True)
        mock_resolver_class.return_value.resolve.assert_called_once_with(config.selectors)
        mock_build_queue.assert_called_once_with(config, ["site"])
        self.assertIsNone(mock_updater_class.call_args[1]["notifier"])

    @patch("cli.FleetUpdater")
    @patch("cli.build_queue")
    @patch("cli.SiteInventory")
    @patch("cli.PantheonRestClient")
    def test_file_mode_skips_inventory(
        self, mock_client_class, mock_inventory_class, mock_build_queue, mock_updater_class
    ):
        config = RunConfig(
            mode="file",
            machine_token="tok",
            slack=SlackSettings(url="https://hooks"),
        )

        run(config)

        mock_inventory_class.assert_not_called()
        mock_build_queue.assert_called_once_with(config, None)
        self.assertIsNotNone(mock_updater_class.call_args[1]["notifier"])


class TestMain(unittest.TestCase):
    """Test the entry point's exit codes."""

    @patch("cli.run")
    @patch("cli.setup_logging")
    def test_success(self, mock_setup_logging, mock_run):
        mock_run.return_value = {"failed": 0}
        self.assertEqual(main(["--team", "--machine-token", "tok"]), 0)
        mock_setup_logging.assert_called_once_with(verbose=False, log_file="fleet-update.log")

    @patch("cli.run")
    @patch("cli.setup_logging")
    def test_failed_jobs(self, mock_setup_logging, mock_run):
        mock_run.return_value = {"failed": 2}
        self.assertEqual(main(["--team", "--machine-token", "tok"]), 1)

    @patch("cli.run")
    @patch("cli.setup_logging")
    def test_report_run_log_file(self, mock_setup_logging, mock_run):
        mock_run.return_value = {"failed": 0}
        main(["--report"])
        mock_setup_logging.assert_called_once_with(
            verbose=False, log_file="fleet-update-report.log"
        )

    @patch("cli.run")
    @patch("cli.setup_logging")
    def test_config_conflict_exits_before_any_job(self, mock_setup_logging, mock_run):
        self.assertEqual(main(["--config-file", "fleet.yml", "--name", "x"]), 2)
        mock_run.assert_not_called()

    @patch("cli.run")
    @patch("cli.setup_logging")
    def test_api_error(self, mock_setup_logging, mock_run):
        mock_run.side_effect = RuntimeError("Authentication failed (401)")
        self.assertEqual(main(["--team"]), 2)


if __name__ == "__main__":
    unittest.main()
