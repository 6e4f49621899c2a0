import hashlib
import http.client
import io
import json
import socket
import unittest
import unittest.mock as mock
import urllib.error
import urllib.parse

from app_config import AppConfig
from translation_service import (
    EngineNotFound,
    EngineRegistry,
    GeminiEngine,
    GoogleTranslateEngine,
    NoEngineAvailable,
    TranslationFailed,
    YoudaoEngine,
    build_engine_registry,
    language_name,
    truncate_for_signature,
)


class FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


def json_response(payload) -> FakeResponse:
    return FakeResponse(json.dumps(payload).encode("utf-8"))


class GoogleTranslateEngineTests(unittest.TestCase):
    def test_timeout_returns_original_text(self) -> None:
        engine = GoogleTranslateEngine(timeout=0.01)

        with mock.patch("urllib.request.urlopen", side_effect=socket.timeout):
            with self.assertLogs("translation_service", level="ERROR") as logs:
                result = engine.translate("hello", "en", "ja")

        self.assertEqual(result, "hello")
        self.assertIn("timed out", "\n".join(logs.output))

    def test_timeout_is_reported_by_request(self) -> None:
        engine = GoogleTranslateEngine(timeout=0.01)

        with mock.patch("urllib.request.urlopen", side_effect=urllib.error.URLError(socket.timeout())):
            with self.assertRaises(TranslationFailed) as ctx:
                engine._request("hello", "en", "ja")

        self.assertIn("timed out", str(ctx.exception))

    def test_timeout_is_passed_to_urlopen(self) -> None:
        engine = GoogleTranslateEngine(timeout=3.5)
        with mock.patch("urllib.request.urlopen", return_value=json_response([[["hola", "hello"]]])) as urlopen:
            self.assertEqual(engine.translate("hello", "auto", "es"), "hola")
        self.assertEqual(urlopen.call_args.kwargs["timeout"], 3.5)
        query = urllib.parse.parse_qs(urllib.parse.urlsplit(urlopen.call_args.args[0].full_url).query)
        self.assertEqual(query["tl"], ["es"])
        self.assertEqual(query["q"], ["hello"])

    def test_segments_are_joined(self) -> None:
        engine = GoogleTranslateEngine()
        payload = [[["Hello. ", "Hola. "], ["World", "Mundo"], None]]
        with mock.patch("urllib.request.urlopen", return_value=json_response(payload)):
            self.assertEqual(engine.translate("Hola. Mundo", "auto", "en"), "Hello. World")

    def test_invalid_json_returns_original_text(self) -> None:
        engine = GoogleTranslateEngine()
        with mock.patch("urllib.request.urlopen", return_value=FakeResponse(b"<html>")):
            with self.assertLogs("translation_service", level="ERROR"):
                self.assertEqual(engine.translate("hello", "auto", "en"), "hello")

    def test_is_available_false_on_network_error(self) -> None:
        engine = GoogleTranslateEngine()
        with mock.patch("urllib.request.urlopen", side_effect=urllib.error.URLError("offline")):
            self.assertFalse(engine.is_available())

    def test_is_available_true_on_answer(self) -> None:
        engine = GoogleTranslateEngine()
        with mock.patch("urllib.request.urlopen", return_value=json_response([[["test", "test"]]])):
            self.assertTrue(engine.is_available())


class YoudaoEngineTests(unittest.TestCase):
    def _engine(self) -> YoudaoEngine:
        return YoudaoEngine("key", "secret", clock=lambda: 1700000000.7)

    def test_truncate_for_signature(self) -> None:
        self.assertEqual(truncate_for_signature("short"), "short")
        self.assertEqual(truncate_for_signature("a" * 20), "a" * 20)
        text = "abcdefghij" + "x" * 5 + "0123456789"
        self.assertEqual(truncate_for_signature(text), "abcdefghij250123456789")

    def test_sign_uses_sha256_of_concatenated_fields(self) -> None:
        expected = hashlib.sha256("keyhello11secret".encode("utf-8")).hexdigest()
        self.assertEqual(self._engine().sign("hello", "1", "1"), expected)

    def test_build_form(self) -> None:
        form = self._engine().build_form("hello", "auto", "zh-CN")
        self.assertEqual(form["q"], "hello")
        self.assertEqual(form["from"], "auto")
        self.assertEqual(form["to"], "zh-CN")
        self.assertEqual(form["appKey"], "key")
        self.assertEqual(form["salt"], "1700000000")
        self.assertEqual(form["curtime"], "1700000000")
        self.assertEqual(form["signType"], "v3")
        self.assertEqual(form["sign"], self._engine().sign("hello", "1700000000", "1700000000"))

    def test_translate_returns_first_translation(self) -> None:
        payload = {"errorCode": "0", "translation": ["你好", "hi"]}
        with mock.patch("urllib.request.urlopen", return_value=json_response(payload)) as urlopen:
            self.assertEqual(self._engine().translate("hello", "auto", "zh-CN"), "你好")
        request = urlopen.call_args.args[0]
        self.assertEqual(request.get_method(), "POST")
        self.assertEqual(urllib.parse.parse_qs(request.data.decode("utf-8"))["appKey"], ["key"])

    def test_error_code_returns_original_text(self) -> None:
        with mock.patch("urllib.request.urlopen", return_value=json_response({"errorCode": "108"})):
            with self.assertLogs("translation_service", level="WARNING"):
                self.assertEqual(self._engine().translate("hello", "auto", "en"), "hello")


class GeminiEngineTests(unittest.TestCase):
    def test_build_prompt(self) -> None:
        prompt = GeminiEngine.build_prompt("bonjour", "auto", "en")
        self.assertIn("from auto-detect to English", prompt)
        self.assertTrue(prompt.endswith("\n\nbonjour"))
        self.assertIn("from French to Japanese", GeminiEngine.build_prompt("x", "fr", "ja"))

    def test_extract_text(self) -> None:
        data = {"candidates": [{"content": {"parts": [{"text": "  hello \n"}]}}]}
        self.assertEqual(GeminiEngine.extract_text(data), "hello")
        self.assertIsNone(GeminiEngine.extract_text({"candidates": []}))
        self.assertIsNone(GeminiEngine.extract_text(None))

    def test_translate_posts_prompt_with_key(self) -> None:
        engine = GeminiEngine("api-key", timeout=2.0)
        data = {"candidates": [{"content": {"parts": [{"text": "hello"}]}}]}
        with mock.patch("urllib.request.urlopen", return_value=json_response(data)) as urlopen:
            self.assertEqual(engine.translate("bonjour", "auto", "en"), "hello")
        request = urlopen.call_args.args[0]
        self.assertIn(":generateContent?key=api-key", request.full_url)
        body = json.loads(request.data.decode("utf-8"))
        self.assertIn("bonjour", body["contents"][0]["parts"][0]["text"])

    def test_missing_candidate_returns_original_text(self) -> None:
        engine = GeminiEngine("api-key")
        with mock.patch("urllib.request.urlopen", return_value=json_response({"candidates": []})):
            self.assertEqual(engine.translate("bonjour", "auto", "en"), "bonjour")


class TransportFailureTests(unittest.TestCase):
    def _http_error(self, url: str, body: bytes) -> urllib.error.HTTPError:
        return urllib.error.HTTPError(url, 401, "Unauthorized", {}, io.BytesIO(body))

    def _engines(self):
        return [YoudaoEngine("key", "secret"), GeminiEngine("api-key")]

    def test_broken_http_responses_return_original_text(self) -> None:
        failures = [
            http.client.IncompleteRead(b""),
            http.client.BadStatusLine("x"),
            http.client.InvalidURL("nonnumeric port"),
            ValueError("unknown url type"),
        ]
        for engine in self._engines():
            for failure in failures:
                with self.subTest(engine=engine.name, failure=type(failure).__name__):
                    with mock.patch("urllib.request.urlopen", side_effect=failure):
                        with self.assertLogs("translation_service", level="ERROR"):
                            self.assertEqual(engine.translate("hello", "auto", "en"), "hello")

    def test_http_error_with_json_body_returns_original_text(self) -> None:
        for engine in self._engines():
            error = self._http_error(engine.endpoint, b'{"errorCode": "108", "error": {"code": 401}}')
            with self.subTest(engine=engine.name):
                with mock.patch("urllib.request.urlopen", side_effect=error):
                    with self.assertLogs("translation_service", level="ERROR"):
                        self.assertEqual(engine.translate("hello", "auto", "en"), "hello")

    def test_read_failure_inside_response_is_contained(self) -> None:
        class TruncatedResponse(FakeResponse):
            def read(self, *args):
                raise http.client.IncompleteRead(b'{"transl', 40)

        for engine in self._engines():
            with self.subTest(engine=engine.name):
                with mock.patch("urllib.request.urlopen", return_value=TruncatedResponse()):
                    with self.assertRaises(TranslationFailed):
                        engine._request("hello", "auto", "en")
                    self.assertFalse(engine.is_available())


class StubEngine(GoogleTranslateEngine):
    def __init__(self, name: str) -> None:
        super().__init__()
        self.name = name

    def _request(self, text, src, dest):
        return f"{self.name}:{text}"


class EngineRegistryTests(unittest.TestCase):
    def test_empty_registry_has_no_engine(self) -> None:
        registry = EngineRegistry()
        self.assertIsNone(registry.current_name)
        with self.assertRaises(NoEngineAvailable):
            registry.translate("hello", "auto", "en")

    def test_first_registered_engine_becomes_current(self) -> None:
        registry = EngineRegistry()
        registry.register_engine(StubEngine("A"))
        registry.register_engine(StubEngine("B"))
        self.assertEqual(registry.current_name, "A")
        self.assertEqual(registry.names(), ["A", "B"])
        self.assertEqual(len(registry), 2)
        self.assertEqual(registry.translate("hi", "auto", "en"), "A:hi")

    def test_set_current(self) -> None:
        registry = EngineRegistry()
        registry.register_engine(StubEngine("A"))
        registry.register_engine(StubEngine("B"))
        registry.set_current("B")
        self.assertEqual(registry.translate("hi", "auto", "en"), "B:hi")

    def test_set_current_unknown_keeps_selection(self) -> None:
        registry = EngineRegistry()
        registry.register_engine(StubEngine("A"))
        with self.assertRaises(EngineNotFound):
            registry.set_current("Missing")
        self.assertEqual(registry.current_name, "A")


class BuildEngineRegistryTests(unittest.TestCase):
    def test_registers_configured_engines_only(self) -> None:
        config = AppConfig(
            current_engine="Gemini",
            engines={"Youdao": {"app_key": "", "app_secret": ""}, "Gemini": {"api_key": "k"}, "Google": {}},
        )
        registry, warnings = build_engine_registry(config)
        self.assertEqual(registry.names(), ["Gemini", "Google"])
        self.assertEqual(registry.current_name, "Gemini")
        self.assertEqual(warnings, [])

    def test_unknown_current_engine_falls_back_with_warning(self) -> None:
        config = AppConfig(current_engine="Youdao", engines={"Google": {}})
        with self.assertLogs("translation_service", level="WARNING"):
            registry, warnings = build_engine_registry(config)
        self.assertEqual(registry.current_name, "Google")
        self.assertEqual(warnings, ["Engine 'Youdao' not available, using Google."])

    def test_no_engines_configured(self) -> None:
        config = AppConfig(current_engine="Youdao", engines={})
        with self.assertLogs("translation_service", level="WARNING"):
            registry, warnings = build_engine_registry(config)
        self.assertEqual(len(registry), 0)
        self.assertIn("no other engine is configured", warnings[0])

    def test_request_timeout_is_shared(self) -> None:
        config = AppConfig(current_engine="Google", engines={"Google": {}}, request_timeout=4.0)
        registry, _ = build_engine_registry(config)
        self.assertEqual(registry.current_engine.timeout, 4.0)


class LanguageNameTests(unittest.TestCase):
    def test_known_and_unknown_codes(self) -> None:
        self.assertEqual(language_name("zh-CN"), "Chinese")
        self.assertEqual(language_name("xx"), "xx")


if __name__ == "__main__":  # pragma: no cover - allows direct execution
    unittest.main()
