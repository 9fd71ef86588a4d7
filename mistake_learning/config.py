import os
from dotenv import load_dotenv

# Explicitly load .env from current working directory
load_dotenv(os.path.join(os.getcwd(), ".env"))


class Config:
    # User config directory
    USER_CONFIG_DIR = os.path.expanduser("~/.mistake_learning")
    DEFAULT_DB_PATH = os.path.join(USER_CONFIG_DIR, "knowledge.db")

    # Logging Configuration
    LOG_DIR = os.getenv("MISTAKE_LEARNING_LOG_DIR", os.path.join(os.getcwd(), "logs"))
    LOG_FILE = os.path.join(LOG_DIR, "mistake_learning.log")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
