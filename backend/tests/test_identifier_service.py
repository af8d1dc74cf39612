import threading

import pytest

from tradein.services import identifier_service
from tradein.services.identifier_service import (
    generate_order_id,
    is_order_id,
    parse_order_id,
    preview_order_id,
)
from tradein.services.sequence_service import peek_sequence
from tradein.validation import ValidationError


def test_first_identifier_uses_first_sequence_value(app):
    assert generate_order_id("641001", "cameras") == "TN37WTDSLR1001"


def test_sequence_is_global_across_regions_and_categories(app):
    first = generate_order_id("641001", "cameras")
    second = generate_order_id("560001", "phones", "Apple")
    third = generate_order_id("560001", "phones", "Apple")

    assert first == "TN37WTDSLR1001"
    assert second == "KA01WTIPNE1002"
    assert third == "KA01WTIPNE1003"


def test_generated_identifiers_match_pattern(app):
    for postal, category, brand in [
        ("600001", "laptops", "Apple"),
        ("110020", "phones", "Samsung"),
        ("", "drones", None),
    ]:
        order_id = generate_order_id(postal, category, brand)
        assert is_order_id(order_id), order_id


def test_state_name_overrides_region_only(app):
    order_id = generate_order_id("641601", "cameras", state_name="Kerala")
    assert order_id.startswith("KL38WTDSLR")


def test_preview_does_not_consume_sequence(app):
    before = peek_sequence()
    preview = preview_order_id("641001", "cameras")
    assert preview == "TN37WTDSLRXXXX"
    assert peek_sequence() == before

    issued = generate_order_id("641001", "cameras")
    assert issued != preview
    assert not is_order_id(preview)


def test_preview_is_rejected_by_parser():
    with pytest.raises(ValidationError):
        parse_order_id("TN37WTDSLRXXXX")


def test_parse_order_id():
    parsed = parse_order_id("ka01wtipne1002")
    assert parsed.region_code == "KA"
    assert parsed.sub_region_code == "01"
    assert parsed.product_type_code == "IPNE"
    assert parsed.sequence == 1002
    assert str(parsed) == "KA01WTIPNE1002"
    assert parsed.to_dict()["fixedTag"] == "WT"


@pytest.mark.parametrize("value", [
    None, "", "TN37XXDSLR1001", "TN3WTDSLR1001", "TN37WTDSL1001", "TN37WTDSLR101", "1N37WTDSLR1001",
])
def test_invalid_identifiers(value):
    assert not is_order_id(value)


def test_sequence_beyond_four_digits_is_not_truncated():
    order_id = identifier_service.format_order_id("TN", "37", "DSLR", 12345)
    assert order_id == "TN37WTDSLR12345"
    assert is_order_id(order_id)
    assert identifier_service.format_order_id("TN", "37", "DSLR", 7) == "TN37WTDSLR0007"


def test_concurrent_generation_never_shares_a_sequence(app):
    results = {}
    errors = []

    def worker(key, postal, category, brand):
        with app.app_context():
            try:
                results[key] = generate_order_id(postal, category, brand)
            except Exception as exc:
                errors.append(exc)

    threads = [
        threading.Thread(target=worker, args=("tn", "641004", "cameras", None)),
        threading.Thread(target=worker, args=("ka", "560001", "phones", "Apple")),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert results["tn"][:10] == "TN37WTDSLR"
    assert results["ka"][:10] == "KA01WTIPNE"
    sequences = {parse_order_id(value).sequence for value in results.values()}
    assert sequences == {1001, 1002}
