"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from ..contracts import InstanceStatus, PaymentRequest, PaymentStatus, WorkflowInstance
from .repository import WorkflowRepository


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow instances and payment requests as JSON documents."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                org_id TEXT NOT NULL,
                payment_request_id TEXT NOT NULL,
                status TEXT NOT NULL,
                document TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS payment_requests (
                id TEXT PRIMARY KEY,
                org_id TEXT NOT NULL,
                status TEXT NOT NULL,
                document TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Repository API
    async def save_instance(self, instance: WorkflowInstance) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_instances (id, org_id, payment_request_id, status, document)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET status = excluded.status, document = excluded.document
            """,
            instance.id,
            instance.org_id,
            instance.payment_request_id,
            instance.status.value,
            instance.model_dump_json(),
        )

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT document FROM workflow_instances WHERE id = ?",
            instance_id,
        )
        if not row:
            return None
        return WorkflowInstance.model_validate_json(row["document"])

    async def list_instances(
        self,
        *,
        org_id: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        payment_request_id: Optional[str] = None,
    ) -> list[WorkflowInstance]:
        clauses = []
        params: list[Any] = []
        if org_id is not None:
            clauses.append("org_id = ?")
            params.append(org_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(InstanceStatus(status).value)
        if payment_request_id is not None:
            clauses.append("payment_request_id = ?")
            params.append(payment_request_id)
        query = "SELECT document FROM workflow_instances"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        rows = await asyncio.to_thread(self._fetchall, query + " ORDER BY rowid", *params)
        return [WorkflowInstance.model_validate_json(r["document"]) for r in rows]

    async def save_payment_request(self, payment_request: PaymentRequest) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO payment_requests (id, org_id, status, document) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET status = excluded.status, document = excluded.document
            """,
            payment_request.id,
            payment_request.org_id,
            payment_request.status.value,
            payment_request.model_dump_json(),
        )

    async def get_payment_request(self, request_id: str) -> PaymentRequest | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT document FROM payment_requests WHERE id = ?",
            request_id,
        )
        if not row:
            return None
        return PaymentRequest.model_validate_json(row["document"])

    async def update_payment_request_status(
        self, request_id: str, status: PaymentStatus
    ) -> PaymentRequest | None:
        request = await self.get_payment_request(request_id)
        if request is None:
            return None
        request.status = status
        await self.save_payment_request(request)
        return request
