from storyguard.db.session import engine, Base
from storyguard.models.story import Story
from storyguard.models.moderation_log import ModerationLog
from storyguard.models.notification_log import NotificationLog

def init_db():
    print("Creating tables...")
    Base.metadata.create_all(bind=engine)
    print("Tables created successfully!")

if __name__ == "__main__":
    init_db()
