from skillswap.models import Skill, User
from skillswap.seed import DEMO_USERS, seed_demo_data


def test_seeding_twice_creates_nothing_new(db):
    first = seed_demo_data(db)
    second = seed_demo_data(db)

    assert [u.id for u in first] == [u.id for u in second]
    assert db.query(User).count() == len(DEMO_USERS)
    assert db.query(Skill).count() == len(DEMO_USERS)


def test_seeded_users_can_talk(client, db, auth_headers):
    amogh, sarah, _ = seed_demo_data(db)

    conversation = client.post("/api/v1/conversations", json={"participantId": sarah.id},
                               headers=auth_headers(amogh))

    assert conversation.status_code == 201
