import json
import logging
from decimal import Decimal

from app.core.logging_config import JsonFormatter, RequestContextFilter, request_id_ctx_var, tenant_id_ctx_var


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, "coupon_batch_created", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_context_and_extras() -> None:
    request_token = request_id_ctx_var.set("req-1")
    tenant_token = tenant_id_ctx_var.set("tenant-1")
    try:
        record = _record(credit_cost=Decimal("50.00"), coupon_count=5)
        RequestContextFilter().filter(record)
        payload = json.loads(JsonFormatter().format(record))
    finally:
        tenant_id_ctx_var.reset(tenant_token)
        request_id_ctx_var.reset(request_token)

    assert payload["message"] == "coupon_batch_created"
    assert payload["request_id"] == "req-1"
    assert payload["tenant_id"] == "tenant-1"
    assert payload["credit_cost"] == "50.00"
    assert payload["coupon_count"] == 5
    assert "lineno" not in payload


def test_explicit_tenant_extra_wins_over_context() -> None:
    token = tenant_id_ctx_var.set("from-context")
    try:
        record = _record(tenant_id="from-extra")
        RequestContextFilter().filter(record)
    finally:
        tenant_id_ctx_var.reset(token)
    assert record.tenant_id == "from-extra"
    assert record.request_id == "-"
