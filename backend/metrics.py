# ---- Usage metrics helpers ----
from storage import QuotaStore


def daily_summary(store: QuotaStore, day: str) -> dict:
    records = store.records_for_day(day)
    return {
        "today": day,
        "uniqueIPs": len({r.ip for r in records}),
        "totalCalls": sum(r.attempts for r in records),
        "successfulCalls": sum(r.calls for r in records),
        "limit402": sum(r.limit_hits for r in records),
        "estCostUSD": round(sum(r.cost_usd for r in records), 6),
    }
