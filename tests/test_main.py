"""
Tests for the application middleware.

Metric labels must stay bounded: requests are labelled by route template.
"""

from unittest.mock import AsyncMock, MagicMock

from prometheus_client import REGISTRY

from flexflow_billing.main import UNMATCHED_ENDPOINT
from flexflow_billing.models.apple_store import SubscriptionInfo

SUBSCRIPTION_ROUTE = "/v1/apple/subscriptions/{original_transaction_id}"


def _request_count(endpoint: str, method: str, status_code: str) -> float:
    value = REGISTRY.get_sample_value(
        "flexflow_billing_http_requests_total",
        {"endpoint": endpoint, "method": method, "status_code": status_code},
    )
    return value or 0.0


def _endpoint_labels() -> set[str]:
    labels: set[str] = set()
    for metric in REGISTRY.collect():
        if not metric.name.startswith("flexflow_billing_http_"):
            continue
        for sample in metric.samples:
            if "endpoint" in sample.labels:
                labels.add(sample.labels["endpoint"])
    return labels


class TestRequestMetrics:
    """Tests for the endpoint label recorded by the request middleware."""

    def test_path_parameters_share_one_series(self, api_client):
        service = MagicMock()
        service.get_subscription_status = AsyncMock(return_value=SubscriptionInfo.inactive())
        client = api_client(service)
        before = _request_count(SUBSCRIPTION_ROUTE, "GET", "200")

        for original_transaction_id in ("111", "222", "333"):
            response = client.get(f"/v1/apple/subscriptions/{original_transaction_id}")
            assert response.status_code == 200

        assert _request_count(SUBSCRIPTION_ROUTE, "GET", "200") == before + 3
        labels = _endpoint_labels()
        assert SUBSCRIPTION_ROUTE in labels
        for original_transaction_id in ("111", "222", "333"):
            assert f"/v1/apple/subscriptions/{original_transaction_id}" not in labels

    def test_unknown_path_is_unmatched(self, api_client):
        before = _request_count(UNMATCHED_ENDPOINT, "GET", "404")

        response = api_client(None).get("/v1/apple/does-not-exist/12345")

        assert response.status_code == 404
        assert _request_count(UNMATCHED_ENDPOINT, "GET", "404") == before + 1
        assert "/v1/apple/does-not-exist/12345" not in _endpoint_labels()

    def test_wrong_method_uses_route_template(self, api_client):
        before = _request_count("/v1/apple/notifications", "GET", "405")

        response = api_client(None).get("/v1/apple/notifications")

        assert response.status_code == 405
        assert _request_count("/v1/apple/notifications", "GET", "405") == before + 1
