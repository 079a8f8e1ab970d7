import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.database import Base, engine
from app.services.jobs import lineup_jobs
from app.store import get_store


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the lineup rotation, request and elimination jobs")
    parser.add_argument("--job", choices=["rotation", "requests", "elimination", "all"], default="all")
    parser.add_argument("--loop", action="store_true", help="keep running on each job's interval")
    parser.add_argument("--log-level", type=str, default="INFO")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")
    Base.metadata.create_all(bind=engine)

    jobs = lineup_jobs(get_store())
    selected = list(jobs.values()) if args.job == "all" else [jobs[args.job]]

    if not args.loop:
        for job in selected:
            summary = job.run_once()
            print(f"{job.name}:")
            for k, v in (summary or {}).items():
                print(f"- {k}: {v}")
        return

    def _stop(*_):
        for job in selected:
            job.stop()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    threads = [threading.Thread(target=job.run_forever, name=job.name, daemon=True) for job in selected]
    for t in threads:
        t.start()
    for t in threads:
        while t.is_alive():
            t.join(timeout=1.0)


if __name__ == "__main__":
    main()
