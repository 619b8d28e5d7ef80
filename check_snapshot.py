from dotenv import load_dotenv

load_dotenv()

import json
import os
from datetime import datetime, timezone

import requests

from app.market.regime import detect_regime
from app.market.snapshot import parse_payload

url = os.getenv("MARKET_SNAPSHOT_URL", "").strip()
path = os.getenv("MARKET_SNAPSHOT_PATH", "data/full_market.json").strip()
refs = [s.strip().upper() for s in os.getenv("REFERENCE_SYMBOLS", "BTC,ETH").split(",") if s.strip()]

if url:
    r = requests.get(url, timeout=10)
    print(r.status_code)
    r.raise_for_status()
    payload = r.json()
else:
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)

snap = parse_payload(payload)
age = snap.age_seconds(datetime.now(timezone.utc))

print("source:", snap.source)
print("updated_at:", snap.updated_at.isoformat(), f"({age / 60:.0f} min old)")
print("coins:", len(snap.coins))
print("regime:", detect_regime(snap.coins, refs).value)
for c in sorted(snap.coins, key=lambda c: c.market_cap_rank)[:10]:
    print(f"  #{c.market_cap_rank:<3} {c.symbol:<6} {c.current_price:>12.4f}  24h {c.change_24h:+.2f}%  7d {c.change_7d:+.2f}%  rsi {c.rsi14:.0f}")
