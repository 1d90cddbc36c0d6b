"""Checks the request schemas accept and reject a set of sample bodies."""

import sys

from bidgate.validation.validator import RequestValidationError, get_schema_registry

SAMPLES = [
    ("token_request", {"auction_id": "demo-1"}, True),
    ("token_request", {"auction_id": 42}, True),
    ("token_request", {}, False),
    ("bid_request", {"token": "t", "amount": "1100", "bidder_id": "postor-1"}, True),
    ("bid_request", {"token": "t", "amount": 1100.5, "bidder_id": 7}, True),
    (
        "bid_request",
        {"token": "t", "amount": "1100", "bidder_id": "postor-1", "timestamp": "2026-06-03T11:00:00Z"},
        True,
    ),
    ("bid_request", {"token": "t", "amount": "-1", "bidder_id": "postor-1"}, False),
    ("bid_request", {"token": "t", "amount": 0, "bidder_id": "postor-1"}, False),
    ("bid_request", {"token": "t", "amount": "1100"}, False),
]


def validate() -> int:
    registry = get_schema_registry()
    failures = 0
    for schema_name, payload, expected in SAMPLES:
        try:
            registry.validate(schema_name, payload)
            accepted, detail = True, ""
        except RequestValidationError as exc:
            accepted, detail = False, "; ".join(exc.problems)
        status = "ok" if accepted is expected else "FAIL"
        failures += status == "FAIL"
        print(f"{status} {schema_name} {payload} {detail}".rstrip())
    return failures


if __name__ == "__main__":
    sys.exit(1 if validate() else 0)
