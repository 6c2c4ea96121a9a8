"""Built-in content catalog used for development, fallback and mock generation."""

from datetime import UTC, datetime

from feedcore.models import ContentItem

MOCK_CONTENT_ITEMS: tuple[ContentItem, ...] = (
    ContentItem(
        id="1",
        content="Learn React and Next.js and you can ship a side project on free tooling. "
        "Small products compound into passive income. Start today.",
        hashtags=["#programming", "#react", "#sideproject"],
        topics=["programming", "startups"],
        likes=42,
        dislikes=3,
        quality_score=85,
        generated_at=datetime(2026, 1, 20, 14, 30, tzinfo=UTC),
    ),
    ContentItem(
        id="2",
        content="Edge AI now runs small language models on phones without a network "
        "round trip. Privacy and latency both win.",
        hashtags=["#ai", "#tech", "#privacy"],
        topics=["ai", "tech"],
        likes=28,
        dislikes=1,
        quality_score=78,
        generated_at=datetime(2026, 1, 20, 13, 45, tzinfo=UTC),
    ),
    ContentItem(
        id="3",
        content="Thirty minutes of deliberate practice a day adds up to a surprising "
        "year. Consistency beats talent.",
        hashtags=["#learning", "#growth", "#discipline"],
        topics=["learning", "discipline"],
        likes=56,
        dislikes=0,
        quality_score=92,
        generated_at=datetime(2026, 1, 20, 12, 15, tzinfo=UTC),
    ),
    ContentItem(
        id="4",
        content="Chasing rallies and panic selling are the two classic mistakes. Build "
        "a portfolio you can hold through the boring years.",
        hashtags=["#investing", "#finance", "#longterm"],
        topics=["investing", "finance"],
        likes=33,
        dislikes=7,
        quality_score=76,
        generated_at=datetime(2026, 1, 20, 10, 20, tzinfo=UTC),
    ),
    ContentItem(
        id="5",
        content="Health is more than workouts: sleep and meal timing matter as much. "
        "Try an eating window and watch your energy.",
        hashtags=["#health", "#nutrition", "#fitness"],
        topics=["health", "nutrition"],
        likes=47,
        dislikes=2,
        quality_score=81,
        generated_at=datetime(2026, 1, 20, 9, 5, tzinfo=UTC),
    ),
    ContentItem(
        id="6",
        content="Travel is not a checklist of photo spots. Learn a few phrases of the "
        "local language and the trip changes completely.",
        hashtags=["#travel", "#culture", "#experience"],
        topics=["travel", "culture"],
        likes=39,
        dislikes=4,
        quality_score=79,
        generated_at=datetime(2026, 1, 20, 8, 30, tzinfo=UTC),
    ),
    ContentItem(
        id="7",
        content="Write the test before the fix. A failing test is the cheapest bug "
        "report you will ever get.",
        hashtags=["#programming", "#testing", "#craft"],
        topics=["programming", "testing"],
        likes=21,
        dislikes=5,
        quality_score=64,
        generated_at=datetime(2026, 1, 19, 22, 10, tzinfo=UTC),
    ),
    ContentItem(
        id="8",
        content="A ten minute walk after lunch does more for the afternoon slump than "
        "a third coffee.",
        hashtags=["#health", "#productivity"],
        topics=["health", "productivity"],
        likes=12,
        dislikes=9,
        quality_score=55,
        generated_at=datetime(2026, 1, 19, 18, 40, tzinfo=UTC),
    ),
)

# Topic -> phrases the mock generator stitches into posts
MOCK_TOPIC_SNIPPETS: dict[str, tuple[str, ...]] = {
    "ai": (
        "Small models on local hardware are good enough for most daily tasks.",
        "Prompt quality matters less than the data you feed the model.",
    ),
    "programming": (
        "Delete code you are not sure about; version control remembers it.",
        "Name things for what they do, not how they do it.",
    ),
    "health": (
        "Sleep is the cheapest performance enhancer available.",
        "Consistency in exercise beats intensity every time.",
    ),
    "finance": (
        "Automate savings first, then spend what is left.",
        "Fees compound just like returns do.",
    ),
    "learning": (
        "Teach what you just learned and you will find the gaps.",
        "Spaced repetition turns cramming into memory.",
    ),
    "travel": (
        "Pack half the clothes and twice the curiosity.",
        "Eat where the locals queue.",
    ),
}
