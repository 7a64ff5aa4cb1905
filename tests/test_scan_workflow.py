from __future__ import annotations

from datetime import date

import pytest

from shopping_tracker.errors import ScanError, ScanParseError
from shopping_tracker.remote.base import TABLE_RECEIPT_ITEMS, TABLE_RECEIPTS
from shopping_tracker.scan import CAPTURE, EDITING, ScanWorkflow, extraction
from shopping_tracker.scan.extraction import ScannedItem, ScannedReceipt
from shopping_tracker.session import ERROR, SUCCESS, WARNING


def _scanned(total=42.90, market="Supermercado Extra", payment="Débito", purchase_date="2024-01-15"):
    return ScannedReceipt(
        items=[
            ScannedItem("Arroz 5kg", 1, 25.90, 25.90),
            ScannedItem("Feijão 1kg", 2, 8.50, 17.00),
        ],
        total_amount=total,
        market=market,
        payment_method=payment,
        purchase_date=purchase_date,
    )


@pytest.fixture
def workflow(make_scanner, receipt_store, session):
    return ScanWorkflow(make_scanner(_scanned()), receipt_store, session)


def test_staged_total_seeds_from_scan(workflow, session) -> None:
    staged = workflow.submit_image(b"\xff\xd8jpeg-bytes")

    assert workflow.state == EDITING
    assert staged.total_amount == pytest.approx(42.90)
    assert workflow.scanner.calls[0].startswith("data:image/jpeg;base64,")
    assert [n.level for n in session.notifier.drain()] == [SUCCESS]


def test_missing_total_falls_back_to_line_sum(make_scanner, receipt_store, session) -> None:
    flow = ScanWorkflow(make_scanner(_scanned(total=None)), receipt_store, session)
    assert flow.submit_image(b"img").total_amount == pytest.approx(42.90)


def test_quantity_edit_recomputes_line_and_total(workflow) -> None:
    workflow.submit_image(b"img")
    staged = workflow.update_item(0, "quantity", 2)

    assert staged.items[0].total_price == pytest.approx(51.80)
    assert staged.total_amount == pytest.approx(68.80)
    assert len(workflow.scanner.calls) == 1


def test_price_edit_recomputes_and_name_edit_does_not(workflow) -> None:
    workflow.submit_image(b"img")
    workflow.update_item(1, "unit_price", "9.00")
    assert workflow.staged.items[1].total_price == pytest.approx(18.00)
    assert workflow.staged.total_amount == pytest.approx(43.90)

    workflow.set_total(40.0)
    workflow.update_item(1, "name", "Feijão preto")
    assert workflow.staged.items[1].name == "Feijão preto"
    assert workflow.staged.total_amount == pytest.approx(40.0)


def test_remove_item_recomputes_total(workflow) -> None:
    workflow.submit_image(b"img")
    workflow.remove_item(0)
    assert [i.name for i in workflow.staged.items] == ["Feijão 1kg"]
    assert workflow.staged.total_amount == pytest.approx(17.00)


def test_oversized_image_rejected_before_scanning(make_scanner, receipt_store, session) -> None:
    scanner = make_scanner(_scanned())
    flow = ScanWorkflow(scanner, receipt_store, session, max_image_bytes=10)

    assert flow.submit_image(b"x" * 11) is None
    assert flow.state == CAPTURE
    assert scanner.calls == []
    assert [n.level for n in session.notifier.drain()] == [WARNING]


@pytest.mark.parametrize("error", [ScanError("Failed to process image with AI"), ScanParseError("bad", raw="???")])
def test_scan_failure_returns_to_capture(make_scanner, receipt_store, session, error) -> None:
    flow = ScanWorkflow(make_scanner(error=error), receipt_store, session)

    assert flow.submit_image(b"img") is None
    assert flow.state == CAPTURE
    assert flow.staged is None
    assert flow.image_data_url is None
    assert [n.level for n in session.notifier.drain()] == [ERROR]


def test_edits_require_a_staged_receipt(workflow) -> None:
    with pytest.raises(ScanError):
        workflow.update_item(0, "quantity", 3)


def test_commit_saves_receipt_and_clears_staging(workflow, records) -> None:
    workflow.submit_image(b"img")
    workflow.update_item(0, "quantity", 2)
    receipt = workflow.commit()

    assert receipt.title == "Compra - Supermercado Extra"
    assert receipt.payment_method == "Débito"
    assert receipt.total_amount == pytest.approx(68.80)
    assert receipt.purchase_date == "2024-01-15"
    assert workflow.state == CAPTURE
    assert workflow.staged is None
    assert len(records.select(TABLE_RECEIPT_ITEMS)) == 2


def test_commit_defaults_without_market_or_payment(make_scanner, receipt_store, session) -> None:
    flow = ScanWorkflow(make_scanner(_scanned(market=None, payment=None, purchase_date=None)), receipt_store, session)
    flow.submit_image(b"img")
    receipt = flow.commit(today=date(2024, 3, 5))

    assert receipt.title == "Compra escaneada - 05/03/2024"
    assert receipt.payment_method == "Não identificado"
    assert receipt.has_discount is False


def test_failed_commit_keeps_staging(workflow, flaky) -> None:
    workflow.submit_image(b"img")
    flaky.fail("insert", TABLE_RECEIPTS)
    assert workflow.commit() is None
    assert workflow.state == EDITING
    assert workflow.staged is not None


def test_malformed_model_body_returns_to_capture(monkeypatch, receipt_store, session) -> None:
    class _ListBody:
        status_code = 200
        text = '["not", "an", "object"]'

        def json(self):
            return ["not", "an", "object"]

    monkeypatch.setattr(extraction.requests, "post", lambda *a, **k: _ListBody())
    scanner = extraction.OpenRouterScanner("key", model="m", endpoint="https://example.test/chat")
    flow = ScanWorkflow(scanner, receipt_store, session)

    assert flow.submit_image(b"img") is None
    assert flow.state == CAPTURE
    assert flow.image_data_url is None
    assert [n.level for n in session.notifier.drain()] == [ERROR]
