# file: marketchat/db/seed/seed.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from marketchat.db.session import engine
from marketchat.models.users import User

DEMO_USERS = [
    {
        "email": "ayesha.customer@example.com",
        "full_name": "Ayesha Khan",
        "role": "customer",
    },
    {
        "email": "bilal.customer@example.com",
        "full_name": "Bilal Ahmed",
        "role": "customer",
    },
    {
        "email": "sales@sunridge-solar.example.com",
        "full_name": "SunRidge Solar",
        "role": "seller",
        "avatar_url": "https://cdn.example.com/avatars/sunridge.png",
    },
    {
        "email": "hello@greenvolt.example.com",
        "full_name": "GreenVolt Energy",
        "role": "seller",
    },
]


def run_seed(bind=engine) -> int:
    print("🔧 Seeding users...")

    created = 0
    with Session(bind) as db:
        for u in DEMO_USERS:
            exists = db.scalars(
                select(User).where(User.email == u["email"])
            ).first()

            if exists:
                print(f"⚠️ User {u['full_name']} already exists, skipping...")
                continue

            db.add(User(**u))
            created += 1

        db.commit()

    print(f"🎉 Seed done, {created} users created")
    return created


if __name__ == "__main__":
    run_seed()
