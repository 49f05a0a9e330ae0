"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from typing import Any, Optional

import asyncpg

from ..contracts import InstanceStatus, PaymentRequest, PaymentStatus, WorkflowInstance
from .repository import WorkflowRepository


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow instances and payment requests as JSONB documents."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                org_id TEXT NOT NULL,
                payment_request_id TEXT NOT NULL,
                status TEXT NOT NULL,
                document JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS payment_requests (
                id TEXT PRIMARY KEY,
                org_id TEXT NOT NULL,
                status TEXT NOT NULL,
                document JSONB NOT NULL
            )
            """
        )

    @staticmethod
    def _load(document: Any) -> Any:
        return json.loads(document) if isinstance(document, str) else document

    # ------------------------------------------------------------------
    async def save_instance(self, instance: WorkflowInstance) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_instances (id, org_id, payment_request_id, status, document)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (id) DO UPDATE SET status = EXCLUDED.status, document = EXCLUDED.document
                """,
                instance.id,
                instance.org_id,
                instance.payment_request_id,
                instance.status.value,
                instance.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT document FROM workflow_instances WHERE id = $1", instance_id
            )
        finally:
            await conn.close()
        if not row:
            return None
        return WorkflowInstance.model_validate(self._load(row["document"]))

    async def list_instances(
        self,
        *,
        org_id: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        payment_request_id: Optional[str] = None,
    ) -> list[WorkflowInstance]:
        clauses = []
        params: list[Any] = []
        for column, value in (
            ("org_id", org_id),
            ("status", InstanceStatus(status).value if status is not None else None),
            ("payment_request_id", payment_request_id),
        ):
            if value is not None:
                params.append(value)
                clauses.append(f"{column} = ${len(params)}")
        query = "SELECT document FROM workflow_instances"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        conn = await self._connect()
        try:
            rows = await conn.fetch(query, *params)
        finally:
            await conn.close()
        return [WorkflowInstance.model_validate(self._load(r["document"])) for r in rows]

    async def save_payment_request(self, payment_request: PaymentRequest) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO payment_requests (id, org_id, status, document) VALUES ($1, $2, $3, $4)
                ON CONFLICT (id) DO UPDATE SET status = EXCLUDED.status, document = EXCLUDED.document
                """,
                payment_request.id,
                payment_request.org_id,
                payment_request.status.value,
                payment_request.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_payment_request(self, request_id: str) -> PaymentRequest | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT document FROM payment_requests WHERE id = $1", request_id
            )
        finally:
            await conn.close()
        if not row:
            return None
        return PaymentRequest.model_validate(self._load(row["document"]))

    async def update_payment_request_status(
        self, request_id: str, status: PaymentStatus
    ) -> PaymentRequest | None:
        request = await self.get_payment_request(request_id)
        if request is None:
            return None
        request.status = status
        await self.save_payment_request(request)
        return request
