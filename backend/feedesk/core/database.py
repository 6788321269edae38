# ============================================================
# feedesk/core/database.py
#
# FeeDesk does not own a database. Fee structures, concessions
# and collections live in the school ERP's Supabase project;
# this module is the thin client FeeDesk reads snapshots from
# and hands validated payment batches to.
#
# get_admin_client()  (SERVICE ROLE key)
# ├── Created lazily, once per process
# └── Used for audit logs and the health check
#
# BranchDB  (typed wrapper around the same client)
# ├── Every query is filtered by branch_id (+ session_id)
# ├── Every insert is stamped with branch_id + session_id
# └── Branch and session come from an explicit LedgerScope,
#     never from ambient request state
# ============================================================

from functools import lru_cache
from typing import Optional
import logging

from supabase import create_client, Client
from supabase.lib.client_options import SyncClientOptions

from feedesk.core.config import settings
from feedesk.schemas.fees import LedgerScope

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_admin_client() -> Client:
    return create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_KEY,
        options=SyncClientOptions(schema=settings.DB_SCHEMA),
    )


class BranchDB:
    """
    Safety wrapper for branch-level data.
    Impossible to read or write another branch's rows through it.
    """

    def __init__(self, scope: LedgerScope, client: Optional[Client] = None):
        if not scope.branch_id or not scope.session_id:
            raise ValueError("BranchDB requires a branch_id and a session_id")
        self.scope = scope
        self._client: Client = client or get_admin_client()

    def select(self, table: str, columns: str = "*", session_scoped: bool = True):
        query = (
            self._client
            .table(table)
            .select(columns)
            .eq("branch_id", self.scope.branch_id)
        )
        if session_scoped:
            query = query.eq("session_id", self.scope.session_id)
        return query

    def insert(self, table: str, payload: dict) -> dict:
        payload["branch_id"] = self.scope.branch_id
        payload["session_id"] = self.scope.session_id
        result = self._client.table(table).insert(payload).execute()
        return result.data[0] if result.data else {}

    def insert_many(self, table: str, rows: list[dict]) -> list[dict]:
        for row in rows:
            row["branch_id"] = self.scope.branch_id
            row["session_id"] = self.scope.session_id
        result = self._client.table(table).insert(rows).execute()
        return result.data or []

    def delete(self, table: str, record_id: str) -> None:
        (
            self._client
            .table(table)
            .delete()
            .eq("id", record_id)
            .eq("branch_id", self.scope.branch_id)
            .execute()
        )

    def rpc(self, name: str, params: dict):
        params = {"p_branch_id": self.scope.branch_id, **params}
        return self._client.rpc(name, params).execute()

    def raw(self) -> Client:
        return self._client


# ── Health check ─────────────────────────────────────────────
async def check_db_connection() -> bool:
    try:
        get_admin_client().table("fee_heads").select("id").limit(1).execute()
        return True
    except Exception as e:
        logger.error(f"DB health check failed: {e}")
        return False
