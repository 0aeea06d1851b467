"""
Supabase access for the DRE engine: one lazily created client per process and
a paginated reader for range queries.
"""
import logging

from supabase import create_client, Client

from app.config import settings

logger = logging.getLogger(__name__)

_client: Client | None = None


def get_db() -> Client:
    """Shared client. Prefers the service-role key: override upserts and
    snapshot writes go through tables protected by RLS."""
    global _client
    if _client is None:
        key = settings.supabase_service_role_key
        if not key:
            logger.warning(
                "SUPABASE_SERVICE_ROLE_KEY not set, falling back to SUPABASE_KEY; "
                "override and snapshot writes may be rejected by RLS"
            )
            key = settings.supabase_key
        _client = create_client(settings.supabase_url, key)
    return _client


def paginate(query_builder, page_limit: int | None = None) -> list[dict]:
    """Read every row of a filtered query, one PostgREST page at a time."""
    page_limit = page_limit or settings.db_page_size
    rows: list[dict] = []
    start = 0
    while True:
        batch = query_builder.range(start, start + page_limit - 1).execute().data or []
        rows.extend(batch)
        if len(batch) < page_limit:
            break
        start += page_limit
    return rows
