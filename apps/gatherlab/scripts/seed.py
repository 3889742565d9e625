from __future__ import annotations

import argparse
import random
import secrets
from datetime import datetime, timedelta, timezone
from pathlib import Path

from faker import Faker

from gatherlab import queries
from gatherlab.config import Config
from gatherlab.db import get_runner, init_db
from gatherlab.stats import load_stats


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed Gatherlab data")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--events", type=int, default=12, help="Number of events")
    parser.add_argument("--users", type=int, default=80, help="Number of users")
    parser.add_argument("--rsvps", type=int, default=150, help="Number of paid rsvp sessions")
    parser.add_argument("--admin", default="admin@gatherlab.org", help="Email of the admin user")
    parser.add_argument("--reset", action="store_true", help="Delete existing DB before seeding")
    return parser.parse_args()


SPOT_TEMPLATES = [
    {"name": "General admission", "kind": "free", "qty_total": 60, "qty_per_person": 2},
    {"name": "Supporter", "kind": "fixed", "qty_total": 20, "qty_per_person": 2, "required_contribution": 25},
    {
        "name": "Pay what you can",
        "kind": "variable",
        "qty_total": 40,
        "qty_per_person": 1,
        "min_contribution": 5,
        "max_contribution": 100,
        "suggested_contribution": 20,
    },
    {"name": "Volunteer", "kind": "work", "qty_total": 6, "qty_per_person": 1, "required_notice_hours": 48},
]


def _contribution(spot) -> int:
    if spot.kind.value == "fixed":
        return spot.required_contribution or 0
    if spot.kind.value == "variable":
        return random.randint(spot.min_contribution or 0, spot.max_contribution or 50)
    return 0


def main() -> None:
    args = parse_args()
    random.seed(args.seed)
    faker = Faker()
    Faker.seed(args.seed)

    db_path = Path(Config.DB_PATH)
    if args.reset and db_path.exists():
        db_path.unlink()
    init_db()

    runner = get_runner()
    try:
        with runner.transaction():
            admin = queries.get_user_by_email(runner, args.admin)
            admin_id = admin.id if admin else queries.create_user(runner, args.admin, "Ada", "Admin")
            queries.add_user_role(runner, admin_id, "admin")

            members_list = queries.create_list(runner, "Members", "Everyone who wants the newsletter")
            vip_list = queries.create_list(runner, "Friends", "Guest list for private events")

            users = []
            for _ in range(args.users):
                email = faker.unique.email()
                user_id = queries.create_user(
                    runner,
                    email,
                    faker.first_name(),
                    faker.last_name(),
                    faker.phone_number() if random.random() < 0.5 else None,
                )
                users.append(queries.get_user_by_id(runner, user_id))
                queries.add_list_member(runner, members_list, email)
                if random.random() < 0.2:
                    queries.add_list_member(runner, vip_list, email)

            now = datetime.now(timezone.utc)
            events = []
            for i in range(args.events):
                title = f"{faker.catch_phrase()} Night"
                starts_at = now + timedelta(days=random.randint(-30, 90), hours=random.randint(17, 21))
                event_id = queries.create_event(
                    runner,
                    {
                        "slug": f"{'-'.join(title.lower().split()[:3])}-{i + 1}",
                        "title": title,
                        "description": faker.paragraph(nb_sentences=3),
                        "starts_at": starts_at.isoformat(),
                        "ends_at": (starts_at + timedelta(hours=3)).isoformat(),
                        "capacity": random.randint(40, 120),
                        "unlisted": random.random() < 0.1,
                        "guest_list_id": vip_list if random.random() < 0.15 else None,
                    },
                )
                for sort, template in enumerate(random.sample(SPOT_TEMPLATES, k=random.randint(1, 4))):
                    spot_id = queries.create_spot(runner, {**template, "sort": sort})
                    queries.add_spot_to_event(runner, event_id, spot_id)
                events.append(queries.get_event_by_id(runner, event_id))

            queries.create_post(
                runner,
                "hello-world",
                "Hello, world",
                "Ada Admin",
                faker.paragraph(nb_sentences=6),
            )

            paid = 0
            taken = set()
            for _ in range(args.rsvps):
                event = random.choice(events)
                user = random.choice(users)
                if (event.id, user.email) in taken:
                    continue
                spots = queries.list_spots_for_event(runner, event.id)
                spot = random.choice(spots)
                stats = load_stats(runner, event)
                if stats.remaining_capacity <= 0 or stats.remaining_spots.get(spot.id, 0) <= 0:
                    continue
                session_id = queries.create_rsvp_session(runner, event.id, secrets.token_hex(16), user.id)
                queries.set_session_contact(
                    runner, session_id, user.first_name, user.last_name, user.email, user.id
                )
                queries.create_rsvp(
                    runner,
                    event.id,
                    spot.id,
                    session_id,
                    _contribution(spot),
                    user.first_name,
                    user.last_name,
                    user.email,
                    user.id,
                )
                queries.mark_session_paid(runner, session_id, None)
                taken.add((event.id, user.email))
                paid += 1

        print("Seed complete")
        print(f"Users: {len(users) + 1}")
        print(f"Events: {len(events)}")
        print(f"Paid rsvps: {paid}")
    finally:
        runner.connection.close()


if __name__ == "__main__":
    main()
