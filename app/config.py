import os
from dataclasses import replace
from pathlib import Path

from compliance.config import EngineConfig, default_rulesets, env_int

BASE_DIR = Path(__file__).resolve().parents[1]
LOGS_DIR = Path(os.getenv("COMPLIANCE_LOG_DIR") or BASE_DIR / "logs")

HISTORY_DAYS_DEFAULT = env_int("HISTORY_DAYS_DEFAULT", 7)
HISTORY_DAYS_MAX = env_int("HISTORY_DAYS_MAX", 90)
VIOLATIONS_LIMIT_DEFAULT = env_int("VIOLATIONS_LIMIT_DEFAULT", 50)

ENGINE_CONFIG = replace(EngineConfig.from_env(), log_dir=LOGS_DIR)
RULESETS = default_rulesets()
