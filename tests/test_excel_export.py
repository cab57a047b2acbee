from datetime import timedelta

import pytest

from orderdesk import tasks
from orderdesk.models import OrderStatus
from orderdesk.schemas import Order
from orderdesk.services.excel_manager import ExcelManager


@pytest.fixture
def manager(tmp_path):
    return ExcelManager(data_directory=str(tmp_path), filename="orders.xlsx", lock_timeout=5)


@pytest.fixture
def order(order_document):
    return Order.from_document(order_document)


def test_build_order_row(order):
    row = ExcelManager.build_order_row(order, "XOF")

    assert row["order_id"] == "4821937"
    assert row["display_id"] == "#4821937"
    assert row["items"] == "3x Pastels"
    assert row["order_status"] == "processing"
    assert row["pending_at"].startswith("2026-10-19T11:00:00")
    assert row["processing_at"].startswith("2026-10-19T11:05:00")
    assert row["completed_at"] is None
    assert row["cancelled_at"] is None
    assert set(row) | {"exported_at"} == set(ExcelManager.ORDER_COLUMNS)


def test_build_order_row_lists_extras(order_document):
    order_document["items"][0]["extras"] = ["Piment", {"id": "frites", "name": "Frites", "price": 500}]
    row = ExcelManager.build_order_row(Order.from_document(order_document), "XOF")

    assert row["items"] == "3x Pastels (+Piment, Frites)"


def test_export_upserts_one_row_per_order(manager, order):
    first = manager.export_order(ExcelManager.build_order_row(order, "XOF"))
    assert first["success"] is True

    completed = order.model_copy(update={
        "status": OrderStatus.COMPLETED,
        "updated_at": order.updated_at + timedelta(minutes=20),
    })
    manager.export_order(ExcelManager.build_order_row(completed, "XOF"))

    rows = manager.get_all_orders()
    assert len(rows) == 1
    assert rows[0]["order_id"] == "4821937"
    assert rows[0]["order_status"] == "completed"


def test_older_export_never_replaces_newer_row(manager, order_document):
    processing = Order.from_document(order_document)
    del order_document["statusHistory"]["processing"]
    order_document["status"] = "pending"
    order_document["updatedAt"] = order_document["createdAt"]
    pending = Order.from_document(order_document)

    manager.export_order(ExcelManager.build_order_row(processing, "XOF"))
    result = manager.export_order(ExcelManager.build_order_row(pending, "XOF"))

    assert result["success"] is True
    assert result["skipped"] is True
    rows = manager.get_all_orders()
    assert len(rows) == 1
    assert rows[0]["order_status"] == "processing"
    assert rows[0]["processing_at"].startswith("2026-10-19T11:05:00")


def test_repeated_export_is_skipped(manager, order):
    row = ExcelManager.build_order_row(order, "XOF")
    manager.export_order(row)

    assert manager.export_order(row)["skipped"] is True
    assert len(manager.get_all_orders()) == 1

def test_export_keeps_other_orders(manager, order_document):
    for order_id in ("1111111", "2222222"):
        order_document["id"] = order_id
        row = ExcelManager.build_order_row(Order.from_document(order_document), "XOF")
        manager.export_order(row)

    assert sorted(r["order_id"] for r in manager.get_all_orders()) == ["1111111", "2222222"]


def test_clear_all(manager, order):
    assert manager.clear_all() is False
    manager.export_order(ExcelManager.build_order_row(order, "XOF"))

    assert manager.clear_all() is True
    assert manager.get_all_orders() == []


def test_queue_order_export_enqueues_row(monkeypatch, order):
    queued = []
    monkeypatch.setattr(tasks.export_order_to_excel, "delay", queued.append)

    tasks.queue_order_export(order)

    assert len(queued) == 1
    assert queued[0]["order_id"] == "4821937"
    assert queued[0]["currency"] == "XOF"


def test_clear_excel_file_task(monkeypatch, manager, order):
    monkeypatch.setattr(tasks, "ExcelManager", lambda: manager)
    manager.export_order(ExcelManager.build_order_row(order, "XOF"))

    assert tasks.clear_excel_file()["success"] is True
    assert tasks.clear_excel_file()["success"] is False
