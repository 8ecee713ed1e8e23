"""
Configuration Management
Loads and validates environment variables
"""
import os
from dotenv import load_dotenv
import pytz

load_dotenv()

class Config:
    """Application configuration"""

    # Application Settings
    TIMEZONE = os.getenv("TIMEZONE", "America/Sao_Paulo")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Reference data
    MATERIALS_PATH = os.getenv("MATERIALS_PATH")

    @classmethod
    def timezone(cls):
        """Local deployment timezone as a pytz tzinfo"""
        return pytz.timezone(cls.TIMEZONE)

    @classmethod
    def validate(cls):
        """Validate configuration"""
        problems = []

        if cls.TIMEZONE not in pytz.all_timezones_set:
            problems.append(f"TIMEZONE={cls.TIMEZONE!r} is not a known timezone")

        if cls.LOG_LEVEL.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            problems.append(f"LOG_LEVEL={cls.LOG_LEVEL!r} is not a logging level")

        if problems:
            raise ValueError(f"Invalid configuration: {'; '.join(problems)}")

        return True

# Validate on import
Config.validate()
