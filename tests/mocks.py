"""Mock utilities for testing external dependencies."""


class FakeHTTPXResponse:
    """Mock httpx response for webhook delivery tests."""

    def __init__(self, status_code: int = 200, text: str = ""):
        self.status_code = status_code
        self.text = text


class FakeHTTPXClient:
    """Mock httpx client that replays scripted outcomes in order.

    Each outcome is either a status code, a FakeHTTPXResponse, or an
    exception instance to raise. The last outcome repeats once the script
    runs out.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [200]
        self.requests: list[dict] = []

    def post(self, url: str, content: bytes = b"", headers: dict | None = None, **kwargs):
        self.requests.append({"url": url, "content": content, "headers": dict(headers or {})})
        index = min(len(self.requests) - 1, len(self.outcomes) - 1)
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, int):
            return FakeHTTPXResponse(outcome)
        return outcome
