"""
External factor adapter: weather, economic and trend signals for a location and date range.

Fetches go through a TTL cache, then a bounded retry loop with a per-call timeout. When a
signal cannot be fetched the deterministic fallback baseline is substituted and the
snapshots are flagged `degraded`; in strict mode the failure is raised instead.
"""
import logging
import time
from collections import defaultdict
from datetime import date

import numpy as np
import requests

from config import config
from models.entities import ExternalFactorSnapshot, Vertical
from utils.cache import TTLCache, make_cache_key
from utils.date_utils import daterange, parse_date
from utils.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

FALLBACK_WEATHER = {"temperature": 20.0, "humidity": 65.0, "precipitation": 0.0}
FALLBACK_ECONOMIC = {"gdp_growth": 2.5, "inflation": 3.2, "unemployment": 4.1}
FALLBACK_TRENDS = {"search_interest": 50.0, "sentiment": 0.1}

WORLD_BANK_INDICATORS = {
    "gdp_growth": "NY.GDP.MKTP.KD.ZG",
    "inflation": "FP.CPI.TOTL.ZG",
    "unemployment": "SL.UEM.TOTL.ZS",
}

# category -> (optimal temperature C, sensitivity)
TEMPERATURE_SENSITIVITY = {
    "apparel": (20.0, 0.8),
    "beverages": (25.0, 0.9),
    "food": (15.0, 0.6),
    "electronics": (22.0, 0.3),
    "automotive": (18.0, 0.4),
    "industrial": (20.0, 0.1),
    "default": (20.0, 0.5),
}

# category -> (rain boost, sensitivity)
PRECIPITATION_SENSITIVITY = {
    "umbrellas": (1.5, 0.9),
    "apparel": (0.8, 0.6),
    "food": (0.9, 0.4),
    "electronics": (0.7, 0.3),
    "automotive": (1.2, 0.7),
    "industrial": (1.0, 0.1),
    "default": (1.0, 0.5),
}

ECONOMIC_SENSITIVITY = {
    "luxury": 1.5,
    "automotive": 1.3,
    "electronics": 1.2,
    "apparel": 1.0,
    "industrial": 1.0,
    "food": 0.8,
    "essentials": 0.7,
    "utilities": 0.5,
    "default": 1.0,
}

SENTIMENT_SENSITIVITY = {
    "apparel": 1.2,
    "technology": 1.1,
    "automotive": 1.0,
    "industrial": 0.8,
    "grocery": 0.6,
    "default": 1.0,
}

CATEGORY_ALIASES = {
    "clothing": "apparel",
    "fashion": "apparel",
    "mechanical": "industrial",
    "manufacturing": "industrial",
    "tools": "industrial",
    "general": "default",
}

PRICE_SENSITIVITY = 0.5
IMPACT_WEIGHTS = {"weather": 0.4, "economic": 0.35, "trend": 0.25}


def _clamp(value, low=-1.0, high=1.0) -> float:
    return float(max(low, min(high, value)))


def normalize_category(category) -> str:
    """Maps a product category or vertical onto the keys of the sensitivity tables."""
    if category is None or category == "":
        return "default"
    if isinstance(category, Vertical):
        category = category.value
    key = str(category).strip().lower()
    return CATEGORY_ALIASES.get(key, key)


# ----------------------------------------------------------
# IMPACT SCORING
# ----------------------------------------------------------
def weather_impact(snapshot: ExternalFactorSnapshot, category="default") -> float:
    cat = normalize_category(category)
    optimal, sensitivity = TEMPERATURE_SENSITIVITY.get(cat, TEMPERATURE_SENSITIVITY["default"])
    deviation = min(1.0, abs(snapshot.temperature - optimal) / 20.0)
    temperature = deviation * sensitivity

    rain_boost, rain_sensitivity = PRECIPITATION_SENSITIVITY.get(cat, PRECIPITATION_SENSITIVITY["default"])
    rain_factor = min(2.0, 1.0 + snapshot.precipitation / 10.0)
    precipitation = (rain_factor * rain_boost - 1.0) * rain_sensitivity

    return _clamp(temperature + precipitation)


def economic_impact(snapshot: ExternalFactorSnapshot, category="default",
                    price_sensitivity: float = PRICE_SENSITIVITY) -> float:
    sensitivity = ECONOMIC_SENSITIVITY.get(normalize_category(category), ECONOMIC_SENSITIVITY["default"])
    gdp = _clamp((snapshot.gdp_growth - 2.0) / 2.0 * sensitivity)
    inflation = -(snapshot.inflation - 2.0) / 2.0 * price_sensitivity
    unemployment = -(snapshot.unemployment - 4.0) / 4.0 * 0.5 * sensitivity
    return _clamp(gdp + inflation + unemployment)


def trend_impact(snapshot: ExternalFactorSnapshot, category="default") -> float:
    sensitivity = SENTIMENT_SENSITIVITY.get(normalize_category(category), SENTIMENT_SENSITIVITY["default"])
    interest = (snapshot.search_interest - 50.0) / 50.0
    return _clamp((interest + snapshot.sentiment * sensitivity) / 2.0)


def impact_score(snapshot: ExternalFactorSnapshot, category="default") -> float:
    """Combined demand impact of one snapshot, in [-1, 1]."""
    score = (
        IMPACT_WEIGHTS["weather"] * weather_impact(snapshot, category)
        + IMPACT_WEIGHTS["economic"] * economic_impact(snapshot, category)
        + IMPACT_WEIGHTS["trend"] * trend_impact(snapshot, category)
    )
    return _clamp(score)


def fallback_snapshots(dates) -> list[ExternalFactorSnapshot]:
    return [
        ExternalFactorSnapshot(date=d, degraded=True, **FALLBACK_WEATHER, **FALLBACK_ECONOMIC, **FALLBACK_TRENDS)
        for d in dates
    ]


def summarize(snapshots) -> dict:
    if not snapshots:
        return {}
    fields = ("temperature", "precipitation", "humidity", "gdp_growth", "inflation",
              "unemployment", "search_interest", "sentiment")
    summary = {f: round(float(np.mean([getattr(s, f) for s in snapshots])), 3) for f in fields}
    summary["degraded"] = any(s.degraded for s in snapshots)
    return summary


def insights(snapshots, vertical=None) -> list[str]:
    """Human-readable demand drivers for a forecast response."""
    lines = []
    summary = summarize(snapshots)
    vertical = Vertical.parse(vertical)

    if summary:
        if summary["temperature"] > 25:
            lines.append("High temperatures may increase demand for seasonal products")
        elif summary["temperature"] < 5:
            lines.append("Cold weather may shift demand toward seasonal winter lines")
        if summary["gdp_growth"] > 3:
            lines.append("Strong economic growth supports increased consumer spending")
        elif summary["gdp_growth"] < 1:
            lines.append("Weak economic growth may dampen discretionary demand")
        if summary["search_interest"] > 70:
            lines.append("High search interest indicates strong market demand")
        if summary["degraded"]:
            lines.append("Some external signals were unavailable; baseline values were used")

    if vertical == Vertical.APPAREL:
        lines.append("Fashion trends and seasonal patterns are key demand drivers")
        lines.append("Weather conditions significantly impact apparel sales")
    elif vertical == Vertical.INDUSTRIAL:
        lines.append("Maintenance schedules and project cycles drive demand patterns")
        lines.append("Economic indicators strongly influence industrial purchasing")

    return lines


# ----------------------------------------------------------
# ADAPTER
# ----------------------------------------------------------
class ExternalFactorAdapter:
    def __init__(
            self,
            session=None,
            cache: TTLCache | None = None,
            openweather_api_key: str = "",
            openweather_base_url: str = "https://api.openweathermap.org/data/2.5",
            world_bank_base_url: str = "https://api.worldbank.org/v2",
            world_bank_enabled: bool = False,
            trends_api_url: str = "",
            trends_api_key: str = "",
            timeout: float = 5.0,
            max_attempts: int = 2,
            backoff_seconds: float = 0.5,
            strict: bool = False,
            cache_ttl: int = 3600,
            sleep=time.sleep,
    ):
        self.session = session or requests.Session()
        self.cache = cache if cache is not None else TTLCache(default_ttl=cache_ttl)
        self.cache_ttl = cache_ttl
        self.openweather_api_key = openweather_api_key
        self.openweather_base_url = openweather_base_url.rstrip("/")
        self.world_bank_base_url = world_bank_base_url.rstrip("/")
        self.world_bank_enabled = world_bank_enabled
        self.trends_api_url = trends_api_url
        self.trends_api_key = trends_api_key
        self.timeout = timeout
        self.max_attempts = max(1, min(2, int(max_attempts)))
        self.backoff_seconds = backoff_seconds
        self.strict = strict
        self._sleep = sleep

    @classmethod
    def from_config(cls, cfg=config, session=None):
        return cls(
            session=session,
            openweather_api_key=cfg.OPENWEATHER_API_KEY,
            openweather_base_url=cfg.OPENWEATHER_BASE_URL,
            world_bank_base_url=cfg.WORLD_BANK_BASE_URL,
            world_bank_enabled=cfg.WORLD_BANK_ENABLED,
            trends_api_url=cfg.TRENDS_API_URL,
            trends_api_key=cfg.TRENDS_API_KEY,
            timeout=cfg.EXTERNAL_TIMEOUT_SECONDS,
            max_attempts=cfg.EXTERNAL_MAX_ATTEMPTS,
            backoff_seconds=cfg.EXTERNAL_RETRY_BACKOFF_SECONDS,
            strict=cfg.EXTERNAL_FACTORS_STRICT,
            cache_ttl=cfg.EXTERNAL_CACHE_TTL_SECONDS,
        )

    def fetch(self, location: str, date_range) -> list[ExternalFactorSnapshot]:
        """
        One snapshot per date in the inclusive `date_range` (start, end).
        Never raises outside strict mode; unavailable signals are replaced by the baseline.
        """
        start, end = (parse_date(d) for d in date_range)
        if end < start:
            raise ValueError("date_range end precedes start")
        dates = list(daterange(start, end))
        location = (location or "").strip()
        span = (start.isoformat(), end.isoformat())

        weather, weather_degraded = self._signal("weather", location, span, FALLBACK_WEATHER,
                                                 lambda: self._fetch_weather(location, dates))
        economic, economic_degraded = self._signal("economic", location, span, FALLBACK_ECONOMIC,
                                                   lambda: self._fetch_economic(location))
        trends, trends_degraded = self._signal("trends", location, span, FALLBACK_TRENDS,
                                               lambda: self._fetch_trends(location, start, end))
        degraded = weather_degraded or economic_degraded or trends_degraded

        by_date = weather.get("by_date", {})
        default_weather = weather.get("average", weather)
        snapshots = []
        for d in dates:
            day_weather = by_date.get(d.isoformat(), default_weather)
            snapshots.append(ExternalFactorSnapshot(
                date=d,
                temperature=float(day_weather["temperature"]),
                precipitation=float(day_weather["precipitation"]),
                humidity=float(day_weather["humidity"]),
                gdp_growth=float(economic["gdp_growth"]),
                inflation=float(economic["inflation"]),
                unemployment=float(economic["unemployment"]),
                search_interest=float(trends["search_interest"]),
                sentiment=float(trends["sentiment"]),
                degraded=degraded,
            ))
        return snapshots

    # ---------------- signal plumbing ----------------
    def _signal(self, signal_type, location, span, fallback: dict, fetcher):
        """Cache -> fetch with retries -> fallback. Returns (values, degraded)."""
        key = make_cache_key(signal_type, location or "-", span)
        cached = self.cache.get(key)
        if cached is not None:
            return cached, False

        try:
            values = fetcher()
        except (requests.RequestException, ValueError, KeyError, TypeError, IndexError) as e:
            if self.strict:
                raise UpstreamUnavailable(f"{signal_type} signal unavailable for '{location}': {e}") from e
            logger.warning(f"⚠️ {signal_type} signal unavailable for '{location}', using baseline: {e}")
            return dict(fallback), True

        if values is None:
            if self.strict:
                raise UpstreamUnavailable(f"{signal_type} signal is not configured")
            logger.info(f"{signal_type} signal not configured, using baseline")
            return dict(fallback), True

        self.cache.set(key, values, ttl=self.cache_ttl)
        return values, False

    def _get_json(self, url, params=None, headers=None):
        for attempt in range(self.max_attempts):
            try:
                resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
                resp.raise_for_status()
                return resp.json()
            except requests.RequestException as e:
                if attempt < self.max_attempts - 1:
                    logger.warning(f"Retrying {url} after error: {e}")
                    self._sleep(self.backoff_seconds * (2 ** attempt))
                else:
                    raise

    # ---------------- providers ----------------
    def _fetch_weather(self, location, dates):
        if not self.openweather_api_key or not location:
            return None
        data = self._get_json(
            f"{self.openweather_base_url}/forecast",
            params={"q": location, "appid": self.openweather_api_key, "units": "metric"},
        )
        buckets = defaultdict(list)
        for item in data["list"]:
            buckets[item["dt_txt"][:10]].append(item)
        if not buckets:
            raise ValueError("empty weather forecast")

        by_date = {}
        for day, items in buckets.items():
            by_date[day] = {
                "temperature": float(np.mean([i["main"]["temp"] for i in items])),
                "humidity": float(np.mean([i["main"].get("humidity", FALLBACK_WEATHER["humidity"]) for i in items])),
                "precipitation": float(sum(i.get("rain", {}).get("3h", 0.0) for i in items)),
            }
        # days beyond the provider window carry the window average
        average = {
            k: float(np.mean([v[k] for v in by_date.values()]))
            for k in ("temperature", "humidity", "precipitation")
        }
        return {"by_date": by_date, "average": average}

    def _fetch_economic(self, location):
        country = _country_code(location)
        if not self.world_bank_enabled or not country:
            return None
        values = {}
        for field_name, indicator in WORLD_BANK_INDICATORS.items():
            data = self._get_json(
                f"{self.world_bank_base_url}/country/{country}/indicator/{indicator}",
                params={"format": "json", "mrnev": 1},
            )
            rows = data[1] if isinstance(data, list) and len(data) > 1 else None
            if not rows or rows[0].get("value") is None:
                raise ValueError(f"no World Bank value for {indicator}")
            values[field_name] = float(rows[0]["value"])
        return values

    def _fetch_trends(self, location, start: date, end: date):
        if not self.trends_api_url:
            return None
        headers = {"Authorization": f"Bearer {self.trends_api_key}"} if self.trends_api_key else None
        data = self._get_json(
            self.trends_api_url,
            params={"location": location, "start": start.isoformat(), "end": end.isoformat()},
            headers=headers,
        )
        return {
            "search_interest": float(data["search_interest"]),
            "sentiment": _clamp(float(data["sentiment"])),
        }


def _country_code(location: str) -> str | None:
    """'Nairobi,KE' -> 'KE'; bare city names have no country."""
    if not location or "," not in location:
        return None
    code = location.rsplit(",", 1)[1].strip()
    return code.upper() if code.isalpha() and len(code) in (2, 3) else None
