from typing import Dict, Optional

# ============================================================================
# Classifier Kind -> Display Category
# ============================================================================
# The classifier reports machine codes; the back office works with the
# German labels the clerks file by.
CATEGORY_LABELS: Dict[str, str] = {
    "INVOICE": "Rechnung",
    "BANK_STATEMENT": "Kontoauszug",
    "CONTRACT": "Vertrag",
    "RECEIPT": "Quittung",
    "REMINDER": "Mahnung",
    "OFFER": "Angebot",
    "DELIVERY_NOTE": "Lieferschein",
    "CREDIT_NOTE": "Gutschrift",
    "TAX_NOTICE": "Steuerbescheid",
    "PAYSLIP": "Gehaltsabrechnung",
    "INSURANCE": "Versicherung",
    "LETTER": "Brief",
}

# ============================================================================
# Helper Functions
# ============================================================================

def get_category_label(kind: Optional[str]) -> Optional[str]:
    """
    Translate a classifier kind into the display category.

    Unknown kinds are passed through unchanged so new classifier codes still
    show up in the review queue.

    :param kind: Category code reported by the classifier (e.g., "INVOICE")
    :return: Display label, the original value, or None if kind is empty
    """
    if kind is None:
        return None
    kind = str(kind).strip()
    if not kind:
        return None
    return CATEGORY_LABELS.get(kind.upper(), kind)

