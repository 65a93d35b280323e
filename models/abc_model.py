import numpy as np
import pandas as pd

from models.entities import AbcCategory
from utils.errors import ValidationError

A_THRESHOLD = 80.0
B_THRESHOLD = 95.0
_EPS = 1e-9


def _annual_value(row: dict) -> float:
    if row.get("annual_value") is not None:
        return float(row["annual_value"])
    price = row.get("price", row.get("unit_price"))
    if price is None or row.get("quantity") is None:
        raise ValidationError(f"product {row.get('product_id', row.get('id'))} needs annual_value or price and quantity")
    return float(price) * float(row["quantity"])


def _empty_result():
    return {
        "products": [],
        "A": [], "B": [], "C": [],
        "total_value": 0.0,
        "category_A_percentage": 0.0,
        "category_B_percentage": 0.0,
        "category_C_percentage": 0.0,
        "category_A_cumulative_percentage": 0.0,
        "category_B_cumulative_percentage": 0.0,
        "category_C_cumulative_percentage": 0.0,
    }


def classify(products) -> dict:
    """
    ABC partition of a catalog by value contribution.
    Rows need `product_id` (or `id`) and either `annual_value` or price x quantity.
    Ties keep catalog order.
    """
    rows = list(products or [])
    if not rows:
        return _empty_result()

    records = []
    for row in rows:
        pid = row.get("product_id", row.get("id"))
        if pid is None:
            raise ValidationError("every product needs a product_id")
        value = _annual_value(row)
        if value < 0 or not np.isfinite(value):
            raise ValidationError(f"product {pid} has an invalid annual value")
        records.append({"product_id": str(pid), "annual_value": value})

    df = pd.DataFrame(records)
    if df["product_id"].duplicated().any():
        dupes = df.loc[df["product_id"].duplicated(), "product_id"].tolist()
        raise ValidationError(f"duplicate product ids: {dupes}")

    df = df.sort_values("annual_value", ascending=False, kind="mergesort").reset_index(drop=True)
    total = float(df["annual_value"].sum())

    if total <= 0:
        df["cumulative_percentage"] = 0.0
        df["category"] = AbcCategory.C.value
    else:
        df["cumulative_percentage"] = df["annual_value"].cumsum() / total * 100.0
        df["category"] = np.where(
            df["cumulative_percentage"] <= A_THRESHOLD + _EPS, AbcCategory.A.value,
            np.where(df["cumulative_percentage"] <= B_THRESHOLD + _EPS, AbcCategory.B.value, AbcCategory.C.value)
        )

    result = _empty_result()
    result["total_value"] = round(total, 2)
    cumulative = 0.0
    for cat in AbcCategory:
        members = df[df["category"] == cat.value]
        share = float(members["annual_value"].sum()) / total * 100.0 if total > 0 else 0.0
        cumulative += share
        result[cat.value] = members["product_id"].tolist()
        result[f"category_{cat.value}_percentage"] = round(share, 2)
        result[f"category_{cat.value}_cumulative_percentage"] = round(min(cumulative, 100.0), 2) if total > 0 else 0.0

    result["products"] = [
        {
            "product_id": r.product_id,
            "annual_value": round(float(r.annual_value), 2),
            "cumulative_percentage": round(float(r.cumulative_percentage), 2),
            "category": r.category,
        }
        for r in df.itertuples(index=False)
    ]
    return result


def classify_catalog(provider) -> dict:
    """Classify everything the data provider knows about, from last-year sales value."""
    return classify(provider.annual_values())
