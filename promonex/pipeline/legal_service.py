"""
Legal agreement status per shop.

Bump TERMS_VERSION when the ToS, Privacy Policy or DPA change so every shop
is asked to agree again.
"""

import logging

from .db import get_client, now_iso, first_row

logger = logging.getLogger(__name__)

TERMS_VERSION = "1.0"


def get_legal_status(shop: str) -> dict:
    sb = get_client()
    result = sb.table("legal_agreements").select("*").eq("shop", shop).limit(1).execute()
    agreement = first_row(result)

    agreed_version = agreement.get("terms_version") if agreement else None
    return {
        "agreed": agreement is not None and agreed_version == TERMS_VERSION,
        "currentTermsVersion": TERMS_VERSION,
        "agreedVersion": agreed_version,
        "isUpdatedTerms": agreement is not None and agreed_version != TERMS_VERSION,
    }


def record_legal_agreement(shop: str) -> None:
    sb = get_client()
    sb.table("legal_agreements").upsert(
        {"shop": shop, "agreed_at": now_iso(), "terms_version": TERMS_VERSION},
        on_conflict="shop",
    ).execute()
    logger.info(f"Legal agreement recorded: shop={shop} version={TERMS_VERSION}")
