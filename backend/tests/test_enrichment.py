import json
import unittest
from unittest import mock

import httpx

from backend.app.core.settings import EnrichmentSettings
from backend.app.services import enrichment
from backend.app.services.enrichment import EnrichmentGateway, QaCandidate
from backend.app.services.errors import EnrichmentError


def _completion(content: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"choices": [{"message": {"content": content}}]})


class EnrichmentGatewayTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = EnrichmentSettings(base_url="http://ai.test/v1/", api_key="secret", model="test-model")
        self.gateway = EnrichmentGateway(self.config)
        self.requests = []

    def _serve(self, response: httpx.Response) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return response

        transport = httpx.MockTransport(handler)
        real_client = httpx.Client
        patcher = mock.patch.object(
            enrichment.httpx,
            "Client",
            lambda **kwargs: real_client(transport=transport, **kwargs),
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_analyze_parses_fenced_json(self) -> None:
        payload = {
            "answer": "Backprop applies the chain rule.",
            "answer_brief": "Chain rule.",
            "tags": ["training"],
            "references": [{"type": "paper", "title": "Learning representations"}],
            "images": [],
        }
        self._serve(_completion("```json\n" + json.dumps(payload) + "\n```"))

        result = self.gateway.analyze("What is backprop?", "chain rule", ["training", "cnn"])

        self.assertEqual(result.answer, "Backprop applies the chain rule.")
        self.assertEqual(result.tags, ["training"])
        self.assertEqual(result.references[0].type, "paper")
        request = self.requests[0]
        self.assertEqual(str(request.url), "http://ai.test/v1/chat/completions")
        self.assertEqual(request.headers["Authorization"], "Bearer secret")
        body = json.loads(request.content)
        self.assertEqual(body["model"], "test-model")
        self.assertIn("training, cnn", body["messages"][0]["content"])

    def test_upstream_error_status(self) -> None:
        self._serve(httpx.Response(502, text="bad gateway"))
        with self.assertRaises(EnrichmentError) as ctx:
            self.gateway.analyze("Q", "A", [])
        self.assertIn("502", str(ctx.exception))

    def test_malformed_and_empty_content(self) -> None:
        self._serve(_completion("not json"))
        with self.assertRaises(EnrichmentError):
            self.gateway.analyze("Q", "A", [])

    def test_missing_answer(self) -> None:
        self._serve(_completion(json.dumps({"answer": "", "tags": ["x"]})))
        with self.assertRaises(EnrichmentError):
            self.gateway.analyze("Q", "A", [])

    def test_unconfigured_gateway_never_calls_out(self) -> None:
        self._serve(_completion("{}"))
        gateway = EnrichmentGateway(EnrichmentSettings())
        with self.assertRaises(EnrichmentError):
            gateway.analyze("Q", "A", [])
        self.assertEqual(self.requests, [])

    def test_generate_drops_malformed_pairs(self) -> None:
        pairs = [
            {"question": "What is SGD?", "answer": "Stochastic gradient descent", "confidence": 0.9},
            {"question": "", "answer": "orphan"},
        ]
        self._serve(_completion(json.dumps({"qa_pairs": pairs})))

        candidates = self.gateway.generate_candidates("doc", [])
        self.assertEqual([qa.question for qa in candidates], ["What is SGD?"])

    def test_judge_verdicts(self) -> None:
        results = [{"verdict": "pass"}, {"average": 3.0}, {"average": 4.2}]
        self._serve(_completion(json.dumps({"results": results})))
        candidates = [QaCandidate(question=f"Q{i}", answer="A") for i in range(4)]

        verdicts = self.gateway.judge_candidates(candidates, "summary", threshold=3.5)
        self.assertEqual(verdicts, [True, False, True, False])

    def test_judge_without_candidates_skips_the_call(self) -> None:
        self._serve(_completion("{}"))
        self.assertEqual(self.gateway.judge_candidates([], "summary", threshold=3.5), [])
        self.assertEqual(self.requests, [])


if __name__ == "__main__":
    unittest.main()
