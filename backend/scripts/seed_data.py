"""数据库种子数据脚本"""
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.database import AsyncSessionLocal, init_db
from app.services.assessment_repository import AssessmentRepository
from app.services.chat_orchestrator import ChatOrchestrator
from app.services.conversation_registry import ConversationRegistry
from app.services.message_threader import MessageThreader
from app.services.record_store import SqlRecordStore
from app.services.reply_generator import MockReplyGenerator
from app.utils.security import create_access_token

DEMO_USER_ID = "demo-user"

CURRENT_ASSESSMENT: dict[str, object] = {
    "age": "18-24",
    "pattern": "regular",
    "cycle_length": "26-30",
    "period_duration": "4-5",
    "flow_heaviness": "moderate",
    "pain_level": "mild",
    "physical_symptoms": ["Bloating", "Headaches"],
    "emotional_symptoms": ["Irritability"],
    "other_symptoms": [],
    "recommendations": [{"title": "Track Your Cycle", "description": "Keep a simple log of each period."}],
}

LEGACY_ASSESSMENT: dict[str, object] = {
    "assessment_data": {
        "age": "25-plus",
        "pattern": "irregular",
        "cycleLength": "irregular",
        "periodDuration": "6-7",
        "flowHeaviness": "heavy",
        "painLevel": "severe",
        "symptoms": {"physical": ["Cramps"], "emotional": ["Anxiety"], "other": "Dizziness"},
    }
}


async def main():
    print("Seeding demo data...")
    await init_db()

    async with AsyncSessionLocal() as db:
        store = SqlRecordStore(db)
        assessments = AssessmentRepository(store)
        current = await assessments.create(CURRENT_ASSESSMENT, DEMO_USER_ID)
        legacy = await assessments.create(LEGACY_ASSESSMENT, DEMO_USER_ID)
        print(f"✓ assessments: {current['id']} (current), {legacy['id']} (legacy)")

        registry = ConversationRegistry(store, assessments)
        orchestrator = ChatOrchestrator(registry, MessageThreader(store, registry), MockReplyGenerator())
        turn = await orchestrator.start_conversation(
            DEMO_USER_ID, "What does my assessment say about my cycle?", str(current["id"])
        )
        print(f"✓ conversation: {turn.conversation_id}")

    print("\nDemo token (Authorization: Bearer <token>):")
    print(f"  {create_access_token({'sub': DEMO_USER_ID})}")


if __name__ == "__main__":
    asyncio.run(main())
