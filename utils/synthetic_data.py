"""
Seeded demo catalog and daily sales histories.

Everything here is driven by an explicit numpy Generator so that backtests and tests
see identical data for identical seeds.
"""
from datetime import date, timedelta

import numpy as np

from models.entities import Criticality, Product, SalesObservation, Vertical
from utils.date_utils import daterange

# (sku, name, category, unit_cost, unit_price)
CATALOG_TEMPLATES = {
    Vertical.APPAREL: [
        ("TSH-COT-SUM-M", "Classic Cotton T-Shirt - Summer Collection", "apparel", 6.5, 19.99),
        ("JNS-DEN-CLF-32", "Denim Jeans - Classic Fit", "apparel", 18.0, 59.99),
        ("SWT-WOL-WIN-L", "Wool Blend Sweater - Winter Collection", "apparel", 22.0, 79.99),
        ("SHO-RUN-ATH-9", "Running Shoes - Athletic Collection", "apparel", 35.0, 119.99),
        ("BAG-LEA-PRM-ONE", "Leather Handbag - Premium Collection", "luxury", 60.0, 249.99),
        ("SCF-SIL-LUX-ONE", "Silk Scarf - Luxury Collection", "luxury", 15.0, 89.99),
    ],
    Vertical.INDUSTRIAL: [
        ("BRG-6204-2RS", "Deep Groove Ball Bearing 6204-2RS", "industrial", 2.4, 6.8),
        ("HYD-PMP-20L", "Hydraulic Gear Pump 20 L/min", "industrial", 180.0, 420.0),
        ("FLT-AIR-HEPA", "HEPA Air Filter Cartridge", "industrial", 12.0, 34.5),
        ("BLT-V-A42", "V-Belt A42", "industrial", 3.1, 9.9),
        ("VLV-BALL-DN50", "Stainless Ball Valve DN50", "industrial", 28.0, 75.0),
        ("MTR-AC-1.5KW", "AC Induction Motor 1.5 kW", "industrial", 140.0, 310.0),
    ],
    Vertical.GENERAL: [
        ("BEV-WTR-500", "Spring Water 500 ml", "beverages", 0.2, 0.9),
        ("FOD-RCE-5KG", "Long Grain Rice 5 kg", "food", 3.5, 7.99),
        ("ELC-USB-C-1M", "USB-C Cable 1 m", "electronics", 1.1, 9.99),
        ("HSE-DTG-2L", "Laundry Detergent 2 L", "essentials", 2.8, 6.49),
        ("UMB-CMP-BLK", "Compact Umbrella", "umbrellas", 4.0, 14.99),
        ("AUT-OIL-5W30", "Engine Oil 5W-30 4 L", "automotive", 11.0, 27.99),
    ],
}

ID_PREFIX = {Vertical.APPAREL: "APP", Vertical.INDUSTRIAL: "IND", Vertical.GENERAL: "GEN"}
TIERS = ("starter", "professional", "enterprise")
PROMOTION_PROBABILITY = 0.1


def generate_catalog(rng: np.random.Generator, per_vertical: int = 4) -> list[Product]:
    products = []
    criticalities = list(Criticality)
    for vertical, templates in CATALOG_TEMPLATES.items():
        for n in range(per_vertical):
            sku, name, category, unit_cost, unit_price = templates[n % len(templates)]
            suffix = f"-{n // len(templates)}" if n >= len(templates) else ""
            products.append(Product(
                id=f"{ID_PREFIX[vertical]}-{n + 1:03d}",
                vertical=vertical,
                lead_time_days=int(rng.integers(3, 15)),
                criticality=criticalities[n % len(criticalities)],
                unit_cost=unit_cost,
                unit_price=unit_price,
                sku=f"{sku}{suffix}",
                name=name,
                category=category,
                current_stock=float(rng.integers(0, 400)),
                days_to_maintenance=int(rng.integers(3, 30)) if vertical == Vertical.INDUSTRIAL else None,
                tier=TIERS[n % len(TIERS)],
            ))
    return products


def generate_history(product: Product, rng: np.random.Generator, days: int = 365,
                     end: date | None = None) -> list[SalesObservation]:
    """Daily observations ending at `end` (yesterday by default), one per date."""
    end = end or date.today() - timedelta(days=1)
    start = end - timedelta(days=days - 1)

    base = float(rng.uniform(20, 120))
    seasonality = float(rng.uniform(0.2, 0.4)) if product.vertical == Vertical.APPAREL else float(rng.uniform(0.05, 0.2))
    trend = float(rng.uniform(-0.2, 0.3))

    history = []
    for t, d in enumerate(daterange(start, end)):
        day_of_year = d.timetuple().tm_yday
        seasonal = 1 + seasonality * np.sin(day_of_year / 365 * 2 * np.pi)
        growth = 1 + trend * t / 365
        promotion = rng.random() < PROMOTION_PROBABILITY
        lift = 1.3 if promotion else 1.0
        variation = rng.uniform(0.9, 1.1)
        quantity = max(0, round(base * seasonal * growth * lift * variation + int(rng.integers(-5, 6))))
        discount = float(rng.uniform(0.05, 0.3)) if promotion else 0.0
        history.append(SalesObservation(
            date=d,
            quantity=float(quantity),
            unit_price=round(product.unit_price * (1 - discount), 2),
        ))
    return history
