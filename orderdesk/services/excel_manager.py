"""
Excel Order Ledger with Concurrency Control

Keeps one row per order in an .xlsx workbook, updated on every committed
creation and status transition. Several Celery workers may write at once, so
every read-modify-write of the workbook happens under a file lock.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from orderdesk.core.config import get_settings
from orderdesk.models import OrderStatus
from orderdesk.schemas import ExtraChoice, Order
from orderdesk.services.order_ids import format_order_id

logger = logging.getLogger(__name__)


class ExcelManager:
    """Lock-protected Excel order ledger."""

    ORDER_COLUMNS = [
        "order_id",
        "display_id",
        "created_at",
        "customer_name",
        "customer_phone",
        "latitude",
        "longitude",
        "items",
        "total",
        "currency",
        "preferred_delivery_time",
        "order_status",
        *[f"{status.value}_at" for status in OrderStatus],
        "updated_at",
        "exported_at",
    ]

    def __init__(
        self,
        data_directory: Optional[str] = None,
        filename: Optional[str] = None,
        lock_timeout: Optional[int] = None,
    ):
        settings = get_settings()
        self.data_dir = Path(data_directory or settings.data_directory)
        self.orders_file = self.data_dir / (filename or settings.excel_filename)
        self.lock_file = self.orders_file.with_name(self.orders_file.name + ".lock")
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.excel_lock_timeout

    @staticmethod
    def build_order_row(order: Order, currency: str) -> dict[str, Any]:
        """Flatten an order into one JSON-serializable ledger row."""
        items = []
        for item in order.items:
            extras = [e.name if isinstance(e, ExtraChoice) else e for e in item.extras]
            label = f"{item.quantity}x {item.name}"
            if extras:
                label += f" (+{', '.join(extras)})"
            items.append(label)

        row = {
            "order_id": order.id,
            "display_id": format_order_id(order.id),
            "created_at": order.created_at.isoformat(),
            "customer_name": order.customer.name,
            "customer_phone": order.customer.phone,
            "latitude": order.customer.location.lat,
            "longitude": order.customer.location.lng,
            "items": "; ".join(items),
            "total": order.total,
            "currency": currency,
            "preferred_delivery_time": order.preferred_delivery_time,
            "order_status": order.status.value,
            "updated_at": order.updated_at.isoformat(),
        }
        for status in OrderStatus:
            reached = order.status_history.get(status)
            row[f"{status.value}_at"] = reached.isoformat() if reached else None
        return row

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load_or_create_df(self) -> pd.DataFrame:
        """Load existing file or create new DataFrame."""
        if self.orders_file.exists():
            try:
                return pd.read_excel(self.orders_file, engine="openpyxl", dtype={"order_id": str})
            except Exception as e:
                logger.warning(f"Error reading {self.orders_file}: {e}")
                return pd.DataFrame(columns=self.ORDER_COLUMNS)
        return pd.DataFrame(columns=self.ORDER_COLUMNS)

    @staticmethod
    def _is_stale(order_row: dict[str, Any], existing: pd.Series) -> bool:
        """True when the ledger row was updated at or after the incoming row."""
        incoming = pd.to_datetime(order_row.get("updated_at"), utc=True, errors="coerce")
        recorded = pd.to_datetime(existing.get("updated_at"), utc=True, errors="coerce")
        if pd.isna(incoming) or pd.isna(recorded):
            return False
        return recorded >= incoming

    def export_order(self, order_row: dict[str, Any]) -> dict[str, Any]:
        """Insert or replace the ledger row of one order, under the file lock."""
        self._ensure_data_dir()

        order_id = str(order_row.get("order_id", ""))
        result = {
            "success": False,
            "message": "",
            "order_id": order_id,
            "exported_at": None,
            "skipped": False,
        }

        try:
            lock = FileLock(str(self.lock_file), timeout=self.lock_timeout)

            with lock:
                logger.debug(f"Lock acquired for Order #{order_id}")

                df = self._load_or_create_df()
                current = df[df["order_id"].astype(str) == order_id] if not df.empty else df

                # Exports can arrive out of order: never replace a row with an older one
                if not current.empty and self._is_stale(order_row, current.iloc[-1]):
                    logger.info(
                        f"Skipping stale export of Order #{order_id} "
                        f"({order_row.get('order_status')}); ledger already has "
                        f"{current.iloc[-1]['order_status']}"
                    )
                    result["success"] = True
                    result["skipped"] = True
                    result["message"] = f"Order #{order_id} already has a newer ledger row"
                    return result

                if not df.empty:
                    df = df[df["order_id"].astype(str) != order_id]

                export_time = datetime.now().isoformat()
                new_row = {column: order_row.get(column) for column in self.ORDER_COLUMNS}
                new_row["order_id"] = order_id
                new_row["exported_at"] = export_time

                frame = pd.DataFrame([new_row], columns=self.ORDER_COLUMNS)
                df = frame if df.empty else pd.concat([df, frame], ignore_index=True)
                df.to_excel(str(self.orders_file), index=False, engine="openpyxl")

                logger.info(f"Order #{order_id} exported to Excel ({new_row['order_status']})")

                result["success"] = True
                result["message"] = f"Order #{order_id} exported"
                result["exported_at"] = export_time

            logger.debug(f"Lock released for Order #{order_id}")

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout for Order #{order_id}")

        return result

    def get_all_orders(self) -> list[dict[str, Any]]:
        """Get all ledger rows."""
        if not self.orders_file.exists():
            return []
        df = pd.read_excel(self.orders_file, engine="openpyxl", dtype={"order_id": str})
        return df.to_dict("records")

    def clear_all(self) -> bool:
        """Delete the ledger and its lock file."""
        removed = False
        for f in [self.orders_file, self.lock_file]:
            if f.exists():
                f.unlink()
                removed = True
        logger.info("Excel ledger cleared")
        return removed
