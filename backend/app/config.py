import os
from dotenv import load_dotenv

load_dotenv()

GOOGLE_CLOUD_PROJECT: str | None = os.getenv("GOOGLE_CLOUD_PROJECT")
VERTEX_AI_LOCATION: str = os.getenv("VERTEX_AI_LOCATION", "global")
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY")
GEMINI_TEMPERATURE: float = float(os.getenv("GEMINI_TEMPERATURE", "0.3"))

FIRESTORE_CHATS_COLLECTION: str = os.getenv("FIRESTORE_CHATS_COLLECTION", "chats")

# Most recent N stored messages sent to the model; 0 means the whole transcript.
HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "10"))

CORS_ORIGINS: list[str] = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")

SYSTEM_PROMPT: str = os.getenv(
    "SYSTEM_PROMPT",
    """You are a knowledgeable real estate assistant.
Resolve user queries related to real estate and help users buy, sell, and rent properties.

Rules:
- Use the search_properties tool to look up listings. Never invent listings or prices.
- Quote prices in the currency the user asked about.
- Keep responses concise and actionable.
""",
)
