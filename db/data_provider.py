import logging
from datetime import date, timedelta

import numpy as np
import pandas as pd
from sqlalchemy import text

from models.entities import Criticality, Product, SalesObservation, Vertical
from utils.ai_config import DEFAULT_TIER, HISTORY_LOOKBACK_DAYS, TIER_HORIZON_LIMITS
from utils.errors import NotFoundError
from utils.synthetic_data import generate_catalog, generate_history

logger = logging.getLogger(__name__)


def _limits_for_tier(tier: str | None) -> dict:
    tier = (tier or DEFAULT_TIER).lower()
    return {
        "tier": tier,
        "max_horizon_days": TIER_HORIZON_LIMITS.get(tier, TIER_HORIZON_LIMITS[DEFAULT_TIER]),
    }


def _val(row: dict, key: str, default=None):
    value = row.get(key)
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return default
    return value


def _product_from_row(r: dict) -> Product:
    days = _val(r, "days_to_maintenance")
    return Product(
        id=str(r["id"]),
        vertical=Vertical.parse(_val(r, "vertical")),
        lead_time_days=int(_val(r, "lead_time_days", 7)),
        criticality=Criticality(str(_val(r, "criticality", "standard")).lower()),
        unit_cost=float(_val(r, "unit_cost", 0.0)),
        holding_cost_rate=float(_val(r, "holding_cost_rate", 0.25)),
        unit_price=float(_val(r, "unit_price", 0.0)),
        sku=_val(r, "sku", ""),
        name=_val(r, "name", ""),
        category=_val(r, "category", ""),
        current_stock=float(_val(r, "current_stock", 0.0)),
        days_to_maintenance=None if days is None else int(days),
        tier=_val(r, "tier", DEFAULT_TIER),
    )


# ----------------------------------------------------------
# SQL
# ----------------------------------------------------------
class SqlDataProvider:
    """Reads products and daily sales from the tenant database."""

    PRODUCT_QUERY = """
        SELECT p.id, p.sku, p.name, p.category, p.vertical, p.criticality,
               p.lead_time_days, p.unit_cost, p.unit_price, p.holding_cost_rate,
               p.current_stock, p.days_to_maintenance, t.tier
        FROM products p
                 LEFT JOIN tenants t ON t.id = p.tenant_id
    """

    def __init__(self, engine):
        self.engine = engine

    def get_product(self, product_id: str) -> Product:
        df = pd.read_sql(
            text(self.PRODUCT_QUERY + " WHERE p.id = :product_id"),
            self.engine,
            params={"product_id": str(product_id)},
        )
        if df.empty:
            raise NotFoundError(f"Product {product_id} not found")
        return _product_from_row(df.iloc[0].to_dict())

    def list_products(self) -> list[Product]:
        df = pd.read_sql(text(self.PRODUCT_QUERY + " ORDER BY p.id"), self.engine)
        return [_product_from_row(r) for r in df.to_dict(orient="records")]

    def get_sales_history(self, product_id: str, lookback_days: int = HISTORY_LOOKBACK_DAYS) -> list[SalesObservation]:
        """Daily aggregated, chronological, one observation per date."""
        q = text("""
                 SELECT sale_date       AS ds,
                        SUM(quantity)   AS qty,
                        AVG(unit_price) AS price
                 FROM sales
                 WHERE product_id = :product_id
                   AND sale_date >= :since
                 GROUP BY sale_date
                 ORDER BY sale_date
                 """)
        since = date.today() - timedelta(days=lookback_days)
        df = pd.read_sql(
            q, self.engine,
            params={"product_id": str(product_id), "since": since.isoformat()}
        )
        if df.empty:
            return []
        df["ds"] = pd.to_datetime(df["ds"]).dt.date
        return [
            SalesObservation(date=r.ds, quantity=float(r.qty), unit_price=float(r.price or 0.0))
            for r in df.itertuples(index=False)
        ]

    def get_limits(self, product_id: str) -> dict:
        return _limits_for_tier(self.get_product(product_id).tier)

    def annual_values(self) -> list[dict]:
        q = text("""
                 SELECT p.id                                         AS product_id,
                        COALESCE(SUM(s.quantity), 0)                 AS quantity,
                        COALESCE(SUM(s.quantity * s.unit_price), 0)  AS annual_value
                 FROM products p
                          LEFT JOIN sales s
                                    ON s.product_id = p.id AND s.sale_date >= :since
                 GROUP BY p.id
                 ORDER BY p.id
                 """)
        df = pd.read_sql(q, self.engine, params={"since": (date.today() - timedelta(days=365)).isoformat()})
        return [
            {"product_id": str(r.product_id), "quantity": float(r.quantity), "annual_value": float(r.annual_value)}
            for r in df.itertuples(index=False)
        ]


# ----------------------------------------------------------
# SYNTHETIC
# ----------------------------------------------------------
class SyntheticDataProvider:
    """Deterministic demo catalog; same interface as SqlDataProvider."""

    def __init__(self, seed: int = 42, products_per_vertical: int = 4, history_days: int = 365,
                 end: date | None = None):
        rng = np.random.default_rng(seed)
        self.seed = seed
        self._products = {p.id: p for p in generate_catalog(rng, products_per_vertical)}
        self._histories = {
            pid: generate_history(p, rng, days=history_days, end=end)
            for pid, p in self._products.items()
        }
        logger.info(f"Synthetic catalog ready: {len(self._products)} products, seed={seed}")

    def get_product(self, product_id: str) -> Product:
        try:
            return self._products[str(product_id)]
        except KeyError:
            raise NotFoundError(f"Product {product_id} not found")

    def list_products(self) -> list[Product]:
        return list(self._products.values())

    def get_sales_history(self, product_id: str, lookback_days: int = HISTORY_LOOKBACK_DAYS) -> list[SalesObservation]:
        self.get_product(product_id)
        history = self._histories[str(product_id)]
        if not history:
            return []
        since = history[-1].date - timedelta(days=lookback_days - 1)
        return [obs for obs in history if obs.date >= since]

    def get_limits(self, product_id: str) -> dict:
        return _limits_for_tier(self.get_product(product_id).tier)

    def annual_values(self) -> list[dict]:
        rows = []
        for pid, history in self._histories.items():
            recent = history[-365:]
            rows.append({
                "product_id": pid,
                "quantity": float(sum(o.quantity for o in recent)),
                "annual_value": round(float(sum(o.quantity * o.unit_price for o in recent)), 2),
            })
        return rows


def build_provider(cfg, engine=None):
    if cfg.DATA_PROVIDER == "synthetic":
        return SyntheticDataProvider(seed=cfg.SYNTHETIC_SEED, products_per_vertical=cfg.SYNTHETIC_PRODUCTS_PER_VERTICAL)
    if cfg.DATA_PROVIDER == "sql":
        return SqlDataProvider(engine)
    raise ValueError(f"Unknown DATA_PROVIDER: {cfg.DATA_PROVIDER}")
