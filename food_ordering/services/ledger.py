"""
Payment Ledger with Concurrency Control

Append-only Excel record of completed payments. One row per order;
a second record for the same order is refused so a replayed task can
never count revenue twice.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from food_ordering.core.config import get_settings

logger = logging.getLogger(__name__)


class PaymentLedger:
    """Process- and thread-safe Excel ledger."""

    COLUMNS = [
        "order_id",
        "owner_id",
        "transaction_id",
        "provider",
        "provider_ref",
        "amount",
        "paid_at",
        "recorded_at",
    ]

    def __init__(self, data_dir: Path, filename: str = "payments.xlsx", lock_timeout: int = 30):
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / filename
        self.lock_path = self.data_dir / f"{filename}.lock"
        self.lock_timeout = lock_timeout

    @classmethod
    def from_settings(cls) -> "PaymentLedger":
        settings = get_settings()
        return cls(
            Path(settings.data_directory),
            settings.ledger_filename,
            settings.ledger_lock_timeout,
        )

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load(self) -> pd.DataFrame:
        if self.path.exists():
            return pd.read_excel(self.path, engine="openpyxl", dtype={"order_id": str})
        return pd.DataFrame(columns=self.COLUMNS)

    def record(self, payment_data: dict[str, Any]) -> dict[str, Any]:
        """Append a completed payment under the file lock."""
        self._ensure_data_dir()

        order_id = str(payment_data.get("order_id", ""))
        result = {
            "success": False,
            "duplicate": False,
            "message": "",
            "order_id": order_id,
            "recorded_at": None,
        }

        try:
            with FileLock(str(self.lock_path), timeout=self.lock_timeout):
                df = self._load()

                if order_id in set(df["order_id"].astype(str)):
                    logger.warning(f"Ledger already holds order {order_id}, skipping")
                    result["success"] = True
                    result["duplicate"] = True
                    result["message"] = f"Order {order_id} already recorded"
                    return result

                recorded_at = datetime.now().isoformat()
                row = {column: payment_data.get(column) for column in self.COLUMNS}
                row["order_id"] = order_id
                row["recorded_at"] = recorded_at

                df = pd.concat([df, pd.DataFrame([row])], ignore_index=True)
                df.to_excel(str(self.path), index=False, engine="openpyxl")

                logger.info(f"Payment for order {order_id} recorded in ledger")

                result["success"] = True
                result["message"] = f"Order {order_id} recorded"
                result["recorded_at"] = recorded_at

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Ledger lock timeout for order {order_id}")

        return result

    def read_all(self) -> list[dict[str, Any]]:
        """All ledger rows, oldest first."""
        if not self.path.exists():
            return []
        return self._load().to_dict("records")

    def total_revenue(self) -> Optional[float]:
        rows = self.read_all()
        if not rows:
            return None
        return round(sum(float(row["amount"] or 0) for row in rows), 2)

    def clear(self) -> None:
        """Delete the ledger and its lock file."""
        for f in (self.path, self.lock_path):
            if f.exists():
                f.unlink()
        logger.info("Payment ledger cleared")
