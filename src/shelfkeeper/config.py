import os
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel

from .errors import ConfigError

ENV_FILE = Path.home() / ".shelfkeeper_env"
SESSION_FILE = Path.home() / ".shelfkeeper_session.json"


class Settings(BaseModel):
    supabase_url: str
    supabase_anon_key: str
    email: Optional[str] = None
    password: Optional[str] = None
    session_file: Optional[Path] = SESSION_FILE
    output_dir: str = "outputs"
    log_level: str = "WARNING"


def load_settings(env_file: Optional[Path] = ENV_FILE) -> Settings:
    """Read settings from the environment after loading dotenv files.

    The per-user env file is loaded first, then a ``.env`` in the working
    directory; neither overrides variables already set in the process.
    """
    if env_file is not None:
        load_dotenv(env_file)
    load_dotenv(find_dotenv(usecwd=True))

    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_ANON_KEY")
    if not url or not key:
        raise ConfigError(
            "SUPABASE_URL and SUPABASE_ANON_KEY must be set "
            f"(in the environment, {env_file} or .env)"
        )

    session_file = os.getenv("SHELFKEEPER_SESSION_FILE")
    if session_file == "":
        session_path = None
    elif session_file:
        session_path = Path(session_file).expanduser()
    else:
        session_path = SESSION_FILE

    return Settings(
        supabase_url=url.rstrip("/"),
        supabase_anon_key=key,
        email=os.getenv("SHELFKEEPER_EMAIL"),
        password=os.getenv("SHELFKEEPER_PASSWORD"),
        session_file=session_path,
        output_dir=os.getenv("SHELFKEEPER_OUTPUT_DIR", "outputs"),
        log_level=os.getenv("SHELFKEEPER_LOG_LEVEL", "WARNING").upper(),
    )
