import json
import tempfile
import unittest
import unittest.mock as mock
from pathlib import Path

from app_config import (
    AppConfig,
    ConfigInvalid,
    GestureConfig,
    PipelineTiming,
    config_from_dict,
    config_to_dict,
    find_config_file,
    load_config,
    load_or_create_config,
    save_config,
)


class GestureConfigTests(unittest.TestCase):
    def test_defaults(self):
        config = GestureConfig()
        self.assertEqual(
            (config.activation_key, config.min_interval_ms, config.max_interval_ms, config.required_tap_count, config.cooldown_ms),
            ("space", 100, 800, 3, 2000),
        )

    def test_rejects_inverted_window(self):
        with self.assertRaises(ConfigInvalid):
            GestureConfig(min_interval_ms=800, max_interval_ms=100)
        with self.assertRaises(ConfigInvalid):
            GestureConfig(min_interval_ms=0)

    def test_rejects_single_tap_and_negative_cooldown(self):
        with self.assertRaises(ConfigInvalid):
            GestureConfig(required_tap_count=1)
        with self.assertRaises(ConfigInvalid):
            GestureConfig(cooldown_ms=-1)

    def test_rejects_blank_activation_key(self):
        with self.assertRaises(ConfigInvalid):
            GestureConfig(activation_key=" ")


class PipelineTimingTests(unittest.TestCase):
    def test_delays_in_seconds(self):
        timing = PipelineTiming(settle_delay_ms=30, clipboard_delay_ms=50)
        self.assertAlmostEqual(timing.settle_delay, 0.03)
        self.assertAlmostEqual(timing.clipboard_delay, 0.05)

    def test_rejects_zero_attempts(self):
        with self.assertRaises(ConfigInvalid):
            PipelineTiming(retry_attempts=0)


class AppConfigTests(unittest.TestCase):
    def test_engines_are_read_only(self):
        config = AppConfig(engines={"Google": {}})
        with self.assertRaises(TypeError):
            config.engines["Gemini"] = {}  # type: ignore[index]

    def test_unknown_log_level(self):
        with self.assertRaises(ConfigInvalid):
            AppConfig(log_level="chatty")

    def test_non_positive_timeout(self):
        with self.assertRaises(ConfigInvalid):
            AppConfig(request_timeout=0)

    def test_credentials_lookup(self):
        config = AppConfig(engines={"Gemini": {"api_key": "abc"}})
        self.assertEqual(config.credentials("Gemini")["api_key"], "abc")
        self.assertIsNone(config.credentials("Youdao"))


class ConfigDictTests(unittest.TestCase):
    def test_empty_dict_gives_defaults(self):
        self.assertEqual(config_from_dict({}), AppConfig())

    def test_partial_sections_fill_defaults(self):
        config = config_from_dict({"gesture": {"required_tap_count": 4}, "pipeline": {"retry_attempts": 5}})
        self.assertEqual(config.gesture.required_tap_count, 4)
        self.assertEqual(config.gesture.max_interval_ms, 800)
        self.assertEqual(config.pipeline.retry_attempts, 5)
        self.assertEqual(config.pipeline.settle_delay_ms, 30)

    def test_integer_timeout_is_accepted(self):
        self.assertEqual(config_from_dict({"request_timeout": 5}).request_timeout, 5.0)

    def test_type_errors_are_reported(self):
        for data in (
            {"hotkey_enabled": "yes"},
            {"gesture": {"required_tap_count": True}},
            {"gesture": []},
            {"engines": {"Gemini": "key"}},
            {"engines": {"Gemini": {"api_key": 1}}},
            [],
        ):
            with self.subTest(data=data):
                with self.assertRaises(ConfigInvalid):
                    config_from_dict(data)

    def test_to_dict_matches_from_dict(self):
        data = {
            "current_engine": "Gemini",
            "target_language": "zh-CN",
            "hotkey_enabled": False,
            "request_timeout": 7.5,
            "log_level": "DEBUG",
            "engines": {"Gemini": {"api_key": "k"}},
            "gesture": {
                "activation_key": "space",
                "min_interval_ms": 120,
                "max_interval_ms": 600,
                "required_tap_count": 3,
                "cooldown_ms": 1000,
            },
            "pipeline": {
                "settle_delay_ms": 10,
                "clipboard_delay_ms": 20,
                "retry_attempts": 2,
                "retry_backoff_ms": 30,
            },
        }
        self.assertEqual(config_to_dict(config_from_dict(data)), data)


class ConfigFileTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)

    def test_save_then_load(self):
        path = self.root / "nested" / "config.json"
        config = AppConfig(current_engine="Google", engines={"Google": {}})
        save_config(config, path)
        self.assertEqual(load_config(path), config)

    def test_load_reports_bad_json(self):
        path = self.root / "config.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ConfigInvalid):
            load_config(path)

    def test_load_reports_missing_file(self):
        with self.assertRaises(ConfigInvalid):
            load_config(self.root / "missing.json")

    def test_load_or_create_writes_defaults(self):
        path = self.root / "config.json"
        config, used = load_or_create_config(path)
        self.assertEqual(config, AppConfig())
        self.assertEqual(used, path)
        self.assertEqual(json.loads(path.read_text(encoding="utf-8"))["current_engine"], "Youdao")

    def test_load_or_create_reads_existing(self):
        path = self.root / "config.json"
        path.write_text(json.dumps({"target_language": "ja"}), encoding="utf-8")
        config, _ = load_or_create_config(path)
        self.assertEqual(config.target_language, "ja")

    def test_find_config_file_searches_parents(self):
        app_dir = self.root / "app" / "bin"
        app_dir.mkdir(parents=True)
        (self.root / "app" / "config.json").write_text("{}", encoding="utf-8")
        with mock.patch("app_config.Path.cwd", return_value=self.root / "elsewhere"):
            found = find_config_file(app_dir)
        self.assertEqual(found, (self.root / "app" / "config.json").resolve())


if __name__ == "__main__":
    unittest.main()
