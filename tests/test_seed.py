from marketchat.db.seed.seed import DEMO_USERS, run_seed
from marketchat.models.users import User


def test_seed_is_repeatable(engine, db):
    assert run_seed(engine) == len(DEMO_USERS)
    assert run_seed(engine) == 0

    roles = {u.role for u in db.query(User).all()}
    assert roles == {"customer", "seller"}
