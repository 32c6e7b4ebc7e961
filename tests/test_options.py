from __future__ import annotations

import unittest
from datetime import datetime

from code_tunnel.errors import UsageError, ValidationError
from code_tunnel.options import (
    TunnelConfig,
    parse_run_args,
    resolve_minutes,
    resolve_options,
    session_window,
)


def _no_prompt(text: str) -> str:
    raise AssertionError(f"unexpected prompt: {text}")


class ParseRunArgsTests(unittest.TestCase):
    def test_parses_short_and_long_flags(self) -> None:
        args = parse_run_args(
            argv=["-a", "acme", "--partition", "gpu", "-q", "high", "--nodes", "2", "120"]
        )
        self.assertEqual(args.account, "acme")
        self.assertEqual(args.partition, "gpu")
        self.assertEqual(args.qos, "high")
        self.assertEqual(args.nodes, "2")
        self.assertEqual(args.minutes, "120")
        self.assertFalse(args.dry_run)

    def test_extra_accepts_quoted_argument_string(self) -> None:
        args = parse_run_args(argv=["--extra", "-w node01 --exclusive", "30"])
        self.assertEqual(args.extra_args, "-w node01 --exclusive")

    def test_extra_accepts_single_dashed_value(self) -> None:
        args = parse_run_args(argv=["--extra", "--exclusive", "30"])
        self.assertEqual(args.extra_args, "--exclusive")
        self.assertEqual(args.minutes, "30")

    def test_short_flag_value_may_start_with_dash(self) -> None:
        args = parse_run_args(argv=["-a", "-acct", "-p", "gpu", "30"])
        self.assertEqual(args.account, "-acct")
        self.assertEqual(args.partition, "gpu")

    def test_unknown_option_names_token(self) -> None:
        with self.assertRaises(UsageError) as ctx:
            parse_run_args(argv=["--bogus", "30"])
        self.assertIn("unrecognized option: --bogus", str(ctx.exception))

    def test_second_positional_is_unexpected(self) -> None:
        with self.assertRaises(UsageError) as ctx:
            parse_run_args(argv=["60", "70"])
        self.assertIn("unexpected argument: 70", str(ctx.exception))

    def test_flag_without_value_is_usage_error(self) -> None:
        with self.assertRaises(UsageError):
            parse_run_args(argv=["--account"])

    def test_abbreviated_flag_is_rejected(self) -> None:
        with self.assertRaises(UsageError):
            parse_run_args(argv=["--acc", "acme"])


class ResolveOptionsTests(unittest.TestCase):
    def _resolve(self, argv: list[str], environ: dict[str, str]) -> TunnelConfig:
        return resolve_options(parse_run_args(argv=argv), environ=environ, prompt=_no_prompt)

    def test_defaults_apply_when_nothing_set(self) -> None:
        config = self._resolve(["-a", "acme", "-p", "gpu", "90"], environ={})
        self.assertEqual(config.cpus, 2)
        self.assertEqual(config.gpus, "gpu:1")
        self.assertEqual(config.nodes, 1)
        self.assertEqual(config.ntasks, 1)
        self.assertEqual(config.session, "vscode-tunnel")
        self.assertIsNone(config.mem)
        self.assertIsNone(config.qos)
        self.assertEqual(config.extra_args, ())
        self.assertEqual(config.time_str, "01:30:00")

    def test_flag_beats_environment(self) -> None:
        environ = {
            "CODE_TUNNEL_ACCOUNT": "env-acct",
            "CODE_TUNNEL_PARTITION": "env-part",
            "CODE_TUNNEL_CPUS": "16",
            "CODE_TUNNEL_GPUS": "gpu:a100:4",
            "CODE_TUNNEL_SESSION": "env-session",
            "CODE_TUNNEL_MINUTES": "240",
        }
        config = self._resolve(
            ["-a", "flag-acct", "-p", "flag-part", "-c", "8", "-g", "gpu:2",
             "--session", "flag-session", "30"],
            environ=environ,
        )
        self.assertEqual(config.account, "flag-acct")
        self.assertEqual(config.partition, "flag-part")
        self.assertEqual(config.cpus, 8)
        self.assertEqual(config.gpus, "gpu:2")
        self.assertEqual(config.session, "flag-session")
        self.assertEqual(config.minutes, 30)

    def test_environment_beats_default(self) -> None:
        environ = {
            "CODE_TUNNEL_ACCOUNT": "acme",
            "CODE_TUNNEL_PARTITION": "gpu",
            "CODE_TUNNEL_MEM": "16G",
            "CODE_TUNNEL_QOS": "high",
            "CODE_TUNNEL_NODES": "2",
            "CODE_TUNNEL_NTASKS": "4",
            "CODE_TUNNEL_EXTRA_ARGS": "--constraint=a100  --exclusive",
            "CODE_TUNNEL_MINUTES": "45",
        }
        config = self._resolve([], environ=environ)
        self.assertEqual(config.account, "acme")
        self.assertEqual(config.mem, "16G")
        self.assertEqual(config.qos, "high")
        self.assertEqual(config.nodes, 2)
        self.assertEqual(config.ntasks, 4)
        self.assertEqual(config.extra_args, ("--constraint=a100", "--exclusive"))
        self.assertEqual(config.minutes, 45)

    def test_empty_environment_value_counts_as_unset(self) -> None:
        environ = {"CODE_TUNNEL_CPUS": "", "CODE_TUNNEL_GPUS": ""}
        config = self._resolve(["-a", "acme", "-p", "gpu", "10"], environ=environ)
        self.assertEqual(config.cpus, 2)
        self.assertEqual(config.gpus, "gpu:1")

    def test_missing_account_names_field(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._resolve(["-p", "gpu", "10"], environ={})
        self.assertIn("account", str(ctx.exception))
        self.assertIn("CODE_TUNNEL_ACCOUNT", str(ctx.exception))

    def test_missing_partition_names_field(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._resolve(["-a", "acme", "10"], environ={})
        self.assertIn("partition", str(ctx.exception))
        self.assertIn("CODE_TUNNEL_PARTITION", str(ctx.exception))

    def test_non_numeric_cpus_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._resolve(["-a", "acme", "-p", "gpu", "-c", "many", "10"], environ={})
        self.assertIn("--cpus", str(ctx.exception))

    def test_zero_nodes_from_environment_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self._resolve(["-a", "acme", "-p", "gpu", "10"], environ={"CODE_TUNNEL_NODES": "0"})

    def test_prompts_for_minutes_when_missing(self) -> None:
        prompts: list[str] = []

        def prompt(text: str) -> str:
            prompts.append(text)
            return "75"

        config = resolve_options(
            parse_run_args(argv=["-a", "acme", "-p", "gpu"]), environ={}, prompt=prompt
        )
        self.assertEqual(config.minutes, 75)
        self.assertEqual(len(prompts), 1)

    def test_invalid_duration_from_environment(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._resolve(["-a", "acme", "-p", "gpu"], environ={"CODE_TUNNEL_MINUTES": "-5"})
        self.assertIn("invalid duration", str(ctx.exception))


class ResolveMinutesTests(unittest.TestCase):
    def test_accepts_positive_digit_strings(self) -> None:
        for raw, expected in (("1", 1), ("90", 90), ("1440", 1440)):
            with self.subTest(raw=raw):
                self.assertEqual(resolve_minutes(raw, prompt=_no_prompt), expected)

    def test_rejects_malformed_values(self) -> None:
        for raw in ("0", "-5", "abc", "", "1h", "1" * 5000):
            with self.subTest(raw=raw):
                with self.assertRaises(ValidationError) as ctx:
                    resolve_minutes(raw, prompt=_no_prompt)
                self.assertIn("invalid duration", str(ctx.exception))

    def test_empty_prompt_answer_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            resolve_minutes(None, prompt=lambda text: "")

    def test_end_of_input_at_prompt_is_rejected(self) -> None:
        def prompt(text: str) -> str:
            raise EOFError

        with self.assertRaises(ValidationError):
            resolve_minutes(None, prompt=prompt)


class SessionWindowTests(unittest.TestCase):
    def test_banner_reports_length_and_end(self) -> None:
        window = session_window(90, now=datetime(2024, 1, 31, 23, 0, 0))
        self.assertEqual(window.start, "2024-01-31 23:00:00")
        self.assertEqual(window.end, "2024-02-01 00:30:00")
        banner = window.banner()
        self.assertIn("Session length: 90 minutes (01:30:00)", banner)
        self.assertIn("End:            2024-02-01 00:30:00", banner)
        self.assertTrue(banner.endswith("=\n"))

    def test_out_of_range_end_does_not_fail(self) -> None:
        window = session_window(60 * 48, now=datetime(9999, 12, 31, 0, 0, 0))
        self.assertEqual(window.end, "(could not compute)")
        self.assertEqual(window.time_str, "48:00:00")


if __name__ == "__main__":
    unittest.main()
