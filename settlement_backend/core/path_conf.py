from pathlib import Path

# Project root (the directory holding .env)
BASE_PATH = Path(__file__).resolve().parent.parent.parent
