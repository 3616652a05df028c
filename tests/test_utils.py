from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta

import pytest

from CollectIQ_core.utils.errors import AllSourcesUnavailable, DuplicateKeyConflict, ErrorKind
from CollectIQ_core.utils.identifiers import build_fingerprint, canonical_hash, new_execution_id
from CollectIQ_core.utils.logging import (
    JsonFormatter,
    RedactFields,
    add_log_context,
    current_log_context,
    get_correlation_id,
    log_context,
    workflow_scope,
)
from CollectIQ_core.utils.time import age_in_days, ensure_utc
from tests.conftest import NOW


def test_log_context_nests_and_restores() -> None:
    assert get_correlation_id() is None
    with log_context(correlation_id="req-1"):
        assert get_correlation_id() == "req-1"
        with workflow_scope("exec-2", "card-2") as bound:
            assert bound == {"correlation_id": "exec-2", "execution_id": "exec-2", "card_id": "card-2"}
        assert current_log_context() == {"correlation_id": "req-1"}
    assert current_log_context() == {}


def test_structlog_processors_add_context_and_redact() -> None:
    with workflow_scope("exec-3", "card-3"):
        event = add_log_context(None, "info", {"event": "pricing.fused", "card_id": "explicit"})
    assert event["execution_id"] == "exec-3"
    assert event["card_id"] == "explicit"
    redacted = RedactFields(["Authorization"])(None, "info", {"headers": {"authorization": "Bearer x"}})
    assert redacted == {"headers": {"authorization": "***"}}


def test_json_formatter_scrubs_secrets() -> None:
    record = logging.LogRecord("collectiq", logging.INFO, __file__, 1, "calling source", None, None)
    record.api_key = "sk-live"
    record.payload = {"token": "abc", "card": "card-1"}
    with workflow_scope("exec-9", "card-9"):
        line = json.loads(JsonFormatter(scrub_fields=["api_key", "token"]).format(record))
    assert line["api_key"] == "***"
    assert line["payload"] == {"token": "***", "card": "card-1"}
    assert line["correlation_id"] == "exec-9"
    assert line["card_id"] == "card-9"
    assert line["message"] == "calling source"


def test_identifiers_are_stable() -> None:
    assert build_fingerprint(["Charizard", None]) == build_fingerprint(["  CHARIZARD", ""])
    assert canonical_hash({"b": 1, "a": 2}) == canonical_hash({"a": 2, "b": 1})
    assert new_execution_id().startswith("exec-")
    assert new_execution_id() != new_execution_id()


def test_time_helpers_require_timezones() -> None:
    assert age_in_days(NOW - timedelta(days=3), as_of=NOW) == pytest.approx(3.0)
    assert age_in_days(NOW + timedelta(days=1), as_of=NOW) == 0.0
    with pytest.raises(ValueError):
        ensure_utc(datetime(2026, 1, 1))


def test_problem_details_carry_extras() -> None:
    conflict = DuplicateKeyConflict("key-1", execution_id="exec-1").problem.model_dump()
    assert conflict["status"] == 409
    assert conflict["execution_id"] == "exec-1"
    unavailable = AllSourcesUnavailable({"ebay": "timeout", "tcgplayer": "503"})
    assert unavailable.kind is ErrorKind.TRANSIENT
    assert unavailable.problem.detail == "ebay: timeout; tcgplayer: 503"
