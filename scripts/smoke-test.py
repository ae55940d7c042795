#!/usr/bin/env python3
"""
Smoke test for paygate deployments.

Flow:
1. Health check
2. Request a Solana challenge (402)
3. Sign it with a throwaway Ed25519 key and unlock (200)
4. Replay the same proof (402 nonce_replayed)
5. Send a malformed proof (402 with a fresh challenge)

The deployment must have RECEIVER_SOL set. Requires pynacl and base58
(installed with the package).

Usage:
    ./scripts/smoke-test.py http://localhost:8787
    ./scripts/smoke-test.py https://paygate.example.com --health-only
"""

import argparse
import base64
import json
import random
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import base58
from nacl.signing import SigningKey

DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_RETRIES = 2
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
MAX_BACKOFF_SECONDS = 4.0
BODY_PREVIEW_BYTES = 200


def log(msg: str) -> None:
    """Print timestamped log message."""
    print(f"[{datetime.now().strftime('%H:%M:%S')}] {msg}", flush=True)


def _is_retryable_status(status_code: int) -> bool:
    return status_code in {408, 425, 502, 503, 504}


@dataclass
class HttpClient:
    base_url: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS

    def request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, dict]:
        """Send a request and return (status, JSON body). Non-2xx is not an error here."""
        url = f"{self.base_url}{path}"
        max_attempts = max(1, self.retries + 1)
        for attempt in range(1, max_attempts + 1):
            request = Request(url, headers=headers or {}, method=method)
            try:
                with urlopen(request, timeout=self.timeout_seconds) as response:
                    return response.getcode(), self._json(response.read())
            except HTTPError as e:
                body = e.read() if e.fp else b""
                if attempt < max_attempts and _is_retryable_status(e.code):
                    self._sleep_backoff(attempt)
                    continue
                return e.code, self._json(body)
            except (URLError, TimeoutError) as e:
                if attempt < max_attempts:
                    self._sleep_backoff(attempt)
                    continue
                raise RuntimeError(f"Network error after {attempt} attempts: {e}") from e
        raise RuntimeError(f"No response from {method} {path}")

    @staticmethod
    def _json(body: bytes) -> dict:
        try:
            return json.loads(body.decode())
        except json.JSONDecodeError as e:
            raise RuntimeError(f"Invalid JSON response: preview={body[:BODY_PREVIEW_BYTES]!r}") from e

    def _sleep_backoff(self, attempt: int) -> None:
        base = self.retry_backoff_seconds * (2 ** (attempt - 1))
        jitter = random.random() * self.retry_backoff_seconds
        time.sleep(min(MAX_BACKOFF_SECONDS, base + jitter))


def expect(label: str, status: int, body: dict, expected_status: int) -> None:
    if status != expected_status:
        raise RuntimeError(f"{label}: expected HTTP {expected_status}, got {status}: {body}")
    log(f"OK   {label} ({status})")


def phantom_proof(key: SigningKey, nonce: str) -> str:
    account = base58.b58encode(bytes(key.verify_key)).decode()
    signature = key.sign(f"x402-proof:{nonce}".encode()).signature
    return f"phantom:{account}:{nonce}:{base64.b64encode(signature).decode()}"


def check_health(client: HttpClient) -> None:
    status, body = client.request("GET", "/health")
    expect("health", status, body, 200)
    if not body.get("ok"):
        raise RuntimeError(f"health: unexpected body {body}")


def check_unlock_flow(client: HttpClient) -> None:
    status, body = client.request("GET", "/premium?chain=solana")
    expect("challenge", status, body, 402)
    challenge = body.get("x402") or {}
    nonce = challenge.get("nonce")
    if not nonce:
        raise RuntimeError(f"challenge: no nonce in {body}")
    log(
        f"     receiver={challenge.get('receiver')} "
        f"amount={challenge.get('amount')} ttl={challenge.get('ttl')}"
    )

    proof = phantom_proof(SigningKey.generate(), nonce)
    status, body = client.request("GET", "/premium", headers={"x402-proof": proof})
    expect("unlock", status, body, 200)
    if body.get("unlocked") is not True or body.get("chain") != "solana":
        raise RuntimeError(f"unlock: unexpected body {body}")

    status, body = client.request("GET", "/premium", headers={"x402-proof": proof})
    expect("replay rejected", status, body, 402)
    if body.get("error") != "nonce_replayed":
        raise RuntimeError(f"replay: expected nonce_replayed, got {body}")

    status, body = client.request("GET", "/premium", headers={"x402-proof": "phantom:only:three"})
    expect("malformed proof re-challenged", status, body, 402)
    if "x402" not in body:
        raise RuntimeError(f"malformed proof: expected a challenge, got {body}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke test a paygate deployment")
    parser.add_argument("base_url", help="e.g. http://localhost:8787")
    parser.add_argument("--health-only", action="store_true")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT_SECONDS)
    args = parser.parse_args()

    client = HttpClient(base_url=args.base_url.rstrip("/"), timeout_seconds=args.timeout)
    try:
        check_health(client)
        if not args.health_only:
            check_unlock_flow(client)
    except RuntimeError as e:
        log(f"FAIL {e}")
        return 1

    log("All checks passed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
