from datetime import datetime, timezone

from dispute_manager.services.dispute_sync import (
    CHARGEBACK_KIND,
    CHARGEBACK_PREFIX,
    extract_chargebacks,
    flatten_order_disputes,
    gid_tail,
    normalize_chargeback,
    normalize_dispute_node,
    parse_amount,
    parse_timestamp,
)


def _direct_node(**overrides):
    node = {
        "id": "gid://shopify/ShopifyPaymentsDispute/9001",
        "amount": {"amount": "49.99", "currencyCode": "USD"},
        "initiatedAt": "2024-05-01T10:00:00Z",
        "evidenceDueBy": "2024-05-15T23:59:59Z",
        "evidenceSentOn": None,
        "reasonDetails": {"reason": "FRAUDULENT"},
        "status": "NEEDS_RESPONSE",
        "type": "CHARGEBACK",
        "order": {
            "id": "gid://shopify/Order/555",
            "name": "#1055",
            "email": "buyer@example.com",
        },
    }
    node.update(overrides)
    return node


def test_gid_tail_strips_to_trailing_segment():
    assert gid_tail("gid://shopify/Order/123") == "123"
    assert gid_tail("123") == "123"
    assert gid_tail(None) is None
    assert gid_tail("") is None


def test_direct_dispute_maps_every_field():
    record = normalize_dispute_node(_direct_node())

    assert record.shopify_dispute_id == "9001"
    assert record.order_id == "555"
    assert record.order_name == "#1055"
    assert record.customer_email == "buyer@example.com"
    assert record.status == "needs_response"
    assert record.reason == "FRAUDULENT"
    assert record.chargeback_reason == "CHARGEBACK"
    assert record.amount == 49.99
    assert record.currency == "USD"
    assert record.evidence_due_by == datetime(2024, 5, 15, 23, 59, 59, tzinfo=timezone.utc)
    assert record.evidence_submitted is False
    assert record.raw_payload["id"].endswith("/9001")


def test_offset_timestamps_are_converted_to_utc():
    parsed = parse_timestamp("2024-05-15T19:00:00-04:00")

    assert parsed == datetime(2024, 5, 15, 23, 0, tzinfo=timezone.utc)
    assert parsed.utcoffset().total_seconds() == 0
    assert parse_timestamp("2024-05-15T23:00:00").tzinfo == timezone.utc
    assert parse_timestamp("not a date") is None


def test_string_amount_parses_to_decimal_value():
    record = normalize_dispute_node(_direct_node(amount={"amount": "49.99", "currencyCode": "USD"}))

    assert record.amount == 49.99
    assert isinstance(record.amount, float)
    assert record.currency == "USD"
    assert parse_amount("not-a-number") is None
    assert parse_amount(None) is None


def test_missing_optional_fields_become_none_without_raising():
    """Absent order, amount, reason and dates must all map to None."""

    record = normalize_dispute_node({"id": "gid://shopify/ShopifyPaymentsDispute/1"})

    assert record.shopify_dispute_id == "1"
    assert record.order_id is None
    assert record.order_name is None
    assert record.customer_email is None
    assert record.status is None
    assert record.reason is None
    assert record.chargeback_reason is None
    assert record.amount is None
    assert record.currency is None
    assert record.evidence_due_by is None
    assert record.evidence_submitted is False


def test_null_order_and_nested_objects_are_tolerated():
    record = normalize_dispute_node(
        _direct_node(order=None, amount=None, reasonDetails=None, evidenceDueBy="garbage")
    )

    assert record.order_id is None
    assert record.amount is None
    assert record.reason is None
    assert record.evidence_due_by is None


def test_evidence_sent_on_marks_evidence_submitted():
    record = normalize_dispute_node(_direct_node(evidenceSentOn="2024-05-03T08:00:00Z"))
    assert record.evidence_submitted is True


def test_missing_dispute_id_gets_unknown_placeholder():
    record = normalize_dispute_node({"status": "OPEN"})
    assert record.shopify_dispute_id.startswith("unknown-")


def test_fallback_dispute_shape_uses_initiated_as_and_reason():
    record = normalize_dispute_node({
        "id": "gid://shopify/ShopifyPaymentsDispute/77",
        "initiatedAs": "INQUIRY",
        "reason": "PRODUCT_NOT_RECEIVED",
        "status": "UNDER_REVIEW",
        "order": {"id": "gid://shopify/Order/8", "name": "#1008", "email": None},
    })

    assert record.chargeback_reason == "INQUIRY"
    assert record.reason == "PRODUCT_NOT_RECEIVED"
    assert record.customer_email is None
    assert record.order_id == "8"


def test_chargeback_record_is_prefixed_and_defaults_to_open():
    order = {"id": "gid://shopify/Order/42", "name": "#1042", "email": "a@b.co", "createdAt": "2024-04-01T00:00:00Z"}
    transaction = {
        "id": "gid://shopify/OrderTransaction/3003",
        "kind": "CHARGEBACK",
        "status": None,
        "amountSet": {"shopMoney": {"amount": "12.50", "currencyCode": "EUR"}},
    }

    record = normalize_chargeback(transaction, order)

    assert record.shopify_dispute_id == f"{CHARGEBACK_PREFIX}3003"
    assert record.status == "open"
    assert record.chargeback_reason == CHARGEBACK_KIND
    assert record.amount == 12.5
    assert record.currency == "EUR"
    assert record.evidence_due_by is None
    assert record.reason is None
    assert record.raw_payload["transaction"] is transaction
    assert record.raw_payload["order"]["name"] == "#1042"


def test_only_chargeback_transactions_are_extracted():
    order_edges = [
        {
            "node": {
                "id": "gid://shopify/Order/42",
                "name": "#1042",
                "email": "a@b.co",
                "transactions": [
                    {"id": "gid://shopify/OrderTransaction/1", "kind": "SALE", "status": "SUCCESS"},
                    {"id": "gid://shopify/OrderTransaction/2", "kind": "CHARGEBACK", "status": "PENDING"},
                ],
            }
        }
    ]

    records = extract_chargebacks(order_edges)

    assert len(records) == 1
    assert records[0].shopify_dispute_id == "chargeback-2"
    assert records[0].status == "pending"


def test_chargeback_kind_match_is_case_insensitive():
    order_edges = [{"node": {"id": "gid://shopify/Order/1", "transactions": [{"id": "t/9", "kind": "chargeback"}]}}]
    assert [r.shopify_dispute_id for r in extract_chargebacks(order_edges)] == ["chargeback-9"]


def test_orders_without_transactions_or_disputes_yield_nothing():
    edges = [{"node": {"id": "gid://shopify/Order/1", "transactions": None, "disputes": None}}, {}]
    assert extract_chargebacks(edges) == []
    assert flatten_order_disputes(edges) == []


def test_flatten_attaches_parent_order_to_each_dispute():
    order_edges = [
        {
            "node": {
                "id": "gid://shopify/Order/5",
                "name": "#1005",
                "email": "c@d.co",
                "disputes": [
                    {"id": "gid://shopify/ShopifyPaymentsDispute/50", "initiatedAs": "CHARGEBACK", "status": "LOST"},
                    {"id": "gid://shopify/ShopifyPaymentsDispute/51", "initiatedAs": "INQUIRY", "status": "WON"},
                ],
            }
        }
    ]

    edges = flatten_order_disputes(order_edges)

    assert len(edges) == 2
    for edge in edges:
        assert edge["node"]["order"] == {"id": "gid://shopify/Order/5", "name": "#1005", "email": "c@d.co"}
    assert normalize_dispute_node(edges[1]["node"]).status == "won"
