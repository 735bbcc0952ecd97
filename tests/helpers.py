"""Constants and small helpers shared by the tests."""
from typing import List

import httpx

TEST_API_KEY = "test-api-key"
TEST_SIGNING_TOKEN = "test-signing-token"
TEST_SPACE_URL = "https://example.swireit.test"
FORWARD_NUMBER = "+15550100002"
OWNER_NUMBER = "+15550100001"
BLOCKED_NUMBER = "+15550109999"
CALLER_NUMBER = "+15550123456"

CALL_ID = "CA" + "a" * 32
OTHER_CALL_ID = "CA" + "b" * 32


def make_call_id(n: int) -> str:
    return f"CA{n:032x}"


def auth_headers() -> dict:
    return {"X-API-Key": TEST_API_KEY}


class ProviderRecorder:
    """httpx.MockTransport handler that records provider REST requests."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"sid": make_call_id(999)})
