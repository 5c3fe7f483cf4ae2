import asyncio
import unittest

import httpx

from cardmarket.api import EmailClient
from cardmarket.api.http_retry import post_with_retry


def run(coro):
    return asyncio.run(coro)


class PostWithRetryTestCase(unittest.TestCase):
    def setUp(self):
        self.delays = []

    async def _sleep(self, delay):
        self.delays.append(delay)

    async def _post(self, handler, **kwargs):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await post_with_retry(client, "https://provider.test/send", sleep=self._sleep, **kwargs)

    def test_retries_server_errors_with_backoff(self):
        statuses = iter([503, 500, 200])

        def handler(request):
            return httpx.Response(next(statuses), json={})

        with self.assertLogs("cardmarket.api.http_retry", level="WARNING"):
            response = run(self._post(handler))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.delays, [1.0, 2.0])

    def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": "bad"})

        with self.assertRaises(httpx.HTTPStatusError):
            run(self._post(handler))
        self.assertEqual(len(calls), 1)
        self.assertEqual(self.delays, [])

    def test_gives_up_after_attempts(self):
        def handler(request):
            return httpx.Response(429)

        with self.assertLogs("cardmarket.api.http_retry", level="WARNING"):
            with self.assertRaises(httpx.HTTPStatusError):
                run(self._post(handler, attempts=2, base_delay=0.5))
        self.assertEqual(self.delays, [0.5])


class EmailClientTestCase(unittest.TestCase):
    def test_send_email(self):
        captured = {}

        def handler(request):
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = request.content
            return httpx.Response(200, json={"id": "email_1"})

        client = EmailClient("https://email.test/send", "key", "Market <noreply@market.test>", transport=httpx.MockTransport(handler))
        message_id = run(client.send_email("buyer@example.com", "Order Created", "Thanks"))

        self.assertEqual(message_id, "email_1")
        self.assertEqual(captured["auth"], "Bearer key")
        self.assertIn(b"buyer@example.com", captured["body"])

    def test_unconfigured_client_raises(self):
        client = EmailClient("", "", "noreply@market.test")
        with self.assertRaises(RuntimeError):
            run(client.send_email("buyer@example.com", "s", "t"))


if __name__ == "__main__":
    unittest.main()
