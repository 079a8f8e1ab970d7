import argparse
import random
import sys
from datetime import timedelta
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.database import Base, engine
from app.services.compatibility import INTEREST_WEIGHTS, LIFESTYLE_CATEGORIES
from app.store import doc_path, get_store

CITIES = ["Lagos, Lagos State, Nigeria", "Ikeja, Lagos State, Nigeria", "Abuja, FCT, Nigeria", "Accra, Greater Accra, Ghana"]
AGE_RANGES = ["18 to 24", "22 to 27", "25 to 30", "28 to 34", "32 to 40"]


def _profile(rng: random.Random, i: int, gender: str) -> dict:
    lifestyle_tags = [t for tags in LIFESTYLE_CATEGORIES.values() for t in tags]
    return {
        "displayName": f"{gender.title()} {i}",
        "photoURL": "",
        "gender": gender,
        "ageRange": rng.choice(AGE_RANGES),
        "interests": rng.sample(sorted(INTEREST_WEIGHTS), k=rng.randint(2, 6)),
        "lifestyle": rng.sample(lifestyle_tags, k=rng.randint(1, 4)),
        "location": rng.choice(CITIES),
        "hasCompletedOnboarding": True,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo users, searching sessions and a lineup")
    parser.add_argument("--n-users", type=int, default=20)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--searching", action="store_true", help="put every seeded user in speed-dating search")
    parser.add_argument("--lineup-category", type=str, default="")
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    store = get_store()
    rng = random.Random(args.seed)
    now = store.now()

    batch = store.batch()
    user_ids = []
    for i in range(args.n_users):
        gender = "male" if i % 2 == 0 else "female"
        uid = f"demo_{gender}_{i:03d}"
        user_ids.append((uid, gender))
        batch.set(doc_path("users", uid), _profile(rng, i, gender))
        if args.searching:
            batch.set(
                doc_path("speedDatingSessions", f"seed_{uid}"),
                {"userId": uid, "status": "searching", "createdAt": now, "syncGroup": 0, "preferences": {"ageMin": 18, "ageMax": 50}},
            )
    batch.commit()

    if args.lineup_category:
        session_id = f"seed_{args.lineup_category.lower()}"
        batch = store.batch()
        batch.set(doc_path("lineupSessions", session_id), {"status": "active", "category": [args.lineup_category], "createdAt": now})
        for n, (uid, gender) in enumerate(user_ids):
            batch.set(
                doc_path("lineupSessions", session_id, "contestantJoinTimes", uid),
                {"gender": gender, "joinedAt": now + timedelta(seconds=n), "completed": False},
            )
        batch.commit()

    print("Seed completed")
    print(f"- users: {len(user_ids)}")
    print(f"- searching: {len(user_ids) if args.searching else 0}")
    print(f"- lineup: {args.lineup_category or '-'}")


if __name__ == "__main__":
    main()
