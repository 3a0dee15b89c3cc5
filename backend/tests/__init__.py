import os
import tempfile

# Point the application at a throwaway SQLite file before any app module imports.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="faq-kb-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'faq_kb.db')}"
os.environ["AI_API_BASE_URL"] = ""
os.environ["AI_API_KEY"] = ""
os.environ["AI_MODEL"] = ""
