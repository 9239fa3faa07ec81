import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# --------- Interpretation service ---------
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN")
GITHUB_AI_ENDPOINT = os.getenv("GITHUB_AI_ENDPOINT", "https://models.github.ai/inference")
GITHUB_AI_MODEL = os.getenv("GITHUB_AI_MODEL", "openai/gpt-4.1")

# --------- Semantic search ---------
EMBEDDING_MODEL = os.getenv("ALCHEMIST_EMBEDDING_MODEL", "all-MiniLM-L6-v2")

# --------- Files ---------
UPLOAD_DIR = Path(os.getenv("ALCHEMIST_UPLOAD_DIR", "uploads"))
EXPORT_DIR = Path(os.getenv("ALCHEMIST_EXPORT_DIR", "exports"))

# --------- Logging ---------
LOG_LEVEL = os.getenv("ALCHEMIST_LOG_LEVEL", "INFO").upper()
LOG_PATH = os.getenv("ALCHEMIST_LOG_PATH")  # unset -> stdout only
