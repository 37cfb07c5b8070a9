"""Prints job queue status every few seconds (Ctrl+C to exit)."""
from __future__ import annotations

import os
import time

from .mongo import get_mongo
from .store import JobStore
from .jobs import utcnow


def render(stats: dict, recent: list) -> str:
    s = stats["byStatus"]
    lines = [
        "=" * 80,
        "ANALYSIS JOB QUEUE",
        "=" * 80,
        f"  Total jobs:      {stats['total']}",
        f"  |- queued:       {s['queued']}",
        f"  |- processing:   {s['processing']}",
        f"  |- succeeded:    {s['succeeded']}",
        f"  |- failed:       {s['failed']}",
        f"  `- dead:         {s['dead']}",
        "",
        f"  vod: {stats['bySource']['vod']}   live: {stats['bySource']['live']}",
    ]
    age = stats["oldestQueuedAgeSeconds"]
    lines.append(f"  oldest queued:   {f'{age:.0f}s ago' if age is not None else 'n/a'}")
    last = stats["lastSucceededAt"]
    lines.append(f"  last succeeded:  {last.isoformat() if last else 'n/a'}")

    if recent:
        lines += ["", "Recent results:"]
        for r in recent:
            summary = (r.get("summary") or "")[:60]
            lines.append(f"  job {r['jobId']}: {summary}")
            if r.get("tags"):
                lines.append(f"      tags: {', '.join(r['tags'])}")
    return "\n".join(lines)


def main():
    client, db = get_mongo(
        os.getenv("MONGO_URI", "mongodb://localhost:27017"),
        os.getenv("MONGO_DB", "segment_analysis"),
    )
    store = JobStore(db)
    interval = float(os.getenv("MONITOR_INTERVAL", "5"))
    try:
        while True:
            recent = list(db.analysis_results.find({}, {"jobId": 1, "summary": 1, "tags": 1}).sort("createdAt", -1).limit(5))
            print("\033[2J\033[H" + render(store.status_counts(), recent))
            print(f"\nupdated {utcnow().isoformat()}Z, refreshing every {interval:.0f}s")
            time.sleep(interval)
    except KeyboardInterrupt:
        pass
    finally:
        client.close()


if __name__ == "__main__":
    main()
