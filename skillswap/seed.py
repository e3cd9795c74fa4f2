"""
Seed demo users and skills.
Run with: python -m skillswap.seed
"""
import logging
from sqlalchemy.orm import Session
from skillswap.database import SessionLocal, init_db
from skillswap.models import User, Skill

logger = logging.getLogger(__name__)

DEMO_USERS = [
    {
        "email": "amogh@skillswap.demo",
        "first_name": "Amogh",
        "last_name": "Vatsa",
        "bio": "Passionate web developer and tech enthusiast",
        "title": "Full Stack Developer",
        "skill": {
            "title": "Web Development",
            "description": "I can teach modern web development from HTML to deployment",
            "category": "Technology",
            "tags": ["web dev", "Technology"],
            "level": "intermediate",
            "seeking": ["mobile development", "UI/UX design"],
        },
    },
    {
        "email": "sarah@skillswap.demo",
        "first_name": "Sarah",
        "last_name": "Johnson",
        "bio": "Digital marketing expert with 5+ years experience",
        "title": "Marketing Specialist",
        "skill": {
            "title": "Digital Marketing",
            "description": "I can teach digital marketing strategies, SEO, and social media marketing",
            "category": "Business",
            "tags": ["marketing", "seo", "social media"],
            "level": "expert",
            "seeking": ["data analysis", "graphic design"],
        },
    },
    {
        "email": "mike@skillswap.demo",
        "first_name": "Mike",
        "last_name": "Chen",
        "bio": "Professional guitarist and music producer",
        "title": "Music Producer",
        "skill": {
            "title": "Guitar Lessons",
            "description": "I can teach acoustic and electric guitar, from beginner to advanced",
            "category": "Music",
            "tags": ["guitar", "music", "lessons"],
            "level": "expert",
            "seeking": ["piano", "music theory"],
        },
    },
]


def seed_demo_data(db: Session):
    """Create the demo users (keyed by email) and their skill. Safe to run repeatedly."""
    users = []
    for entry in DEMO_USERS:
        user = db.query(User).filter(User.email == entry["email"]).first()
        if user is None:
            user = User(
                email=entry["email"],
                first_name=entry["first_name"],
                last_name=entry["last_name"],
                bio=entry["bio"],
                title=entry["title"],
                profile_image_url=f"https://api.dicebear.com/7.x/avataaars/svg?seed={entry['first_name'].lower()}",
            )
            db.add(user)
            db.flush()
            logger.info("Created demo user %s", entry["email"])

        skill_data = entry["skill"]
        exists = db.query(Skill).filter(Skill.user_id == user.id, Skill.title == skill_data["title"]).first()
        if not exists:
            db.add(Skill(user_id=user.id, **skill_data))
        users.append(user)

    db.commit()
    return users


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
    session = SessionLocal()
    try:
        seeded = seed_demo_data(session)
        logger.info("Seeded %d demo users", len(seeded))
    finally:
        session.close()
