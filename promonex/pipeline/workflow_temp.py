"""
Temporary "Create promo video" workflow state, keyed by shop + product.

Only the ephemeral UI position is stored (which scene tab is open, whether
the final video is showing); asset data lives on the Short, its scenes and
its audio info. The row is deleted when the merchant clicks Done.
"""

import logging
from typing import Optional

from .db import get_client, now_iso, first_row

logger = logging.getLogger(__name__)

TABLE = "promo_workflow_temp"
SCENE_TABS = ("scene1", "scene2", "scene3")


def normalize_state(state: Optional[dict]) -> dict:
    """Reduce any payload to {activeTab, showingFinal}."""
    state = state or {}
    active_tab = state.get("activeTab")
    return {
        "activeTab": active_tab if active_tab in ("scene2", "scene3") else "scene1",
        "showingFinal": bool(state.get("showingFinal")),
    }


def get_workflow_temp(shop: str, product_id: str) -> Optional[dict]:
    sb = get_client()
    result = (
        sb.table(TABLE)
        .select("state")
        .eq("shop", shop)
        .eq("product_id", product_id)
        .limit(1)
        .execute()
    )
    row = first_row(result)
    if not row or not row.get("state"):
        return None
    return normalize_state(row["state"])


def save_workflow_temp(shop: str, product_id: str, state: dict) -> dict:
    slim = normalize_state(state)
    sb = get_client()
    sb.table(TABLE).upsert(
        {"shop": shop, "product_id": product_id, "state": slim, "updated_at": now_iso()},
        on_conflict="shop,product_id",
    ).execute()
    return slim


def delete_workflow_temp(shop: str, product_id: str) -> None:
    sb = get_client()
    sb.table(TABLE).delete().eq("shop", shop).eq("product_id", product_id).execute()
    logger.info(f"Workflow temp cleared: shop={shop} product={product_id}")
