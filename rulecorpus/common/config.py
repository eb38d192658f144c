# Centralised configuration and logging setup for every pipeline stage.

# What this module provides:
#   1) A Settings dataclass holding all env-driven configuration
#   2) get_settings(): reads env vars once, configures logging once
#   3) settings: a module-level singleton (import and use anywhere)

import os
import logging
from functools import lru_cache
from dataclasses import dataclass
from typing import Optional


# ----------------------------
# Env helpers
# ----------------------------
def _env_str(key: str, default: str) -> str:
    val = os.getenv(key)
    return val.strip() if val and val.strip() else default

def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    try:
        return int(raw) if raw is not None else default
    except ValueError:
        return default

def _env_float(key: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default

def _env_bool(key: str, default: bool = False) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


# ----------------------------
# Logging
# ----------------------------
def setup_logging(level: str) -> None:
    """
    Configure the root logger ONCE per process (idempotent).
    Guard with a flag (_configured) so repeated calls don't attach duplicate handlers.
    """
    if getattr(setup_logging, "_configured", False):
        return
    logging.basicConfig(
        # 2025-10-25 12:34:56,789 INFO [ingestion] [OK] Part 001 -> application/pdf ...
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )
    # httpx logs every request at INFO; keep it quiet unless debugging
    logging.getLogger("httpx").setLevel(logging.WARNING)
    setup_logging._configured = True


# ----------------------------
# Settings model
# ----------------------------
@dataclass(frozen=True)
class Settings:
    # identity
    service_name: str
    log_level: str

    # storage layout
    data_root: str
    manifest_path: str
    pdf_dir: str
    md_dir: str
    corpus_path: str
    events_path: str

    # document titles: "<title_prefix> <identifier> - <name>"
    title_prefix: str

    # fetch behaviour
    user_agent: str
    referer: str
    fetch_timeout: float
    max_redirects: int
    retry_delay_ms: int
    min_pdf_bytes: int
    fetch_workers: int
    warm_session: bool

    # higher-authority Act
    act_url: str
    act_title: str
    act_referer: str
    act_pdf_path: str
    act_md_path: str

    # chat request defaults handed to the model collaborator
    openai_model: str
    max_output_tokens: int
    temperature: Optional[float]


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_5) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)


# ----------------------------
# Factory (cached)
# ----------------------------
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Read all environment variables, configure logging once, and return a
    frozen Settings object.
    """
    service_name = _env_str("SERVICE_NAME", "rulecorpus")
    log_level    = _env_str("LOG_LEVEL", "INFO")

    data_root     = _env_str("DATA_ROOT", "data")
    manifest_path = _env_str("MANIFEST_PATH", os.path.join(data_root, "car.yaml"))
    pdf_dir       = _env_str("PDF_DIR", os.path.join(data_root, "download", "car"))
    md_dir        = _env_str("MD_DIR", os.path.join(data_root, "md", "car"))
    corpus_path   = _env_str("CORPUS_PATH", os.path.join(data_root, "md", "ALL_CAR.md"))
    events_path   = _env_str("EVENTS_PATH", os.path.join(data_root, "events.jsonl"))

    # 1 = sequential; never more than 4 concurrent fetches
    fetch_workers = min(max(_env_int("FETCH_WORKERS", 1), 1), 4)

    setup_logging(log_level)

    result = Settings(
        service_name=service_name,
        log_level=log_level,
        data_root=data_root,
        manifest_path=manifest_path,
        pdf_dir=pdf_dir,
        md_dir=md_dir,
        corpus_path=corpus_path,
        events_path=events_path,
        title_prefix=_env_str("TITLE_PREFIX", "CAR Part"),
        user_agent=_env_str("USER_AGENT", DEFAULT_USER_AGENT),
        referer=_env_str("REFERER", "https://www.aviation.govt.nz/rules/rule-part/"),
        fetch_timeout=_env_float("FETCH_TIMEOUT", 60.0),
        max_redirects=_env_int("MAX_REDIRECTS", 8),
        retry_delay_ms=_env_int("RETRY_DELAY_MS", 400),
        min_pdf_bytes=_env_int("MIN_PDF_BYTES", 10240),
        fetch_workers=fetch_workers,
        warm_session=_env_bool("WARM_SESSION", True),
        act_url=_env_str(
            "ACT_URL",
            "https://www.legislation.govt.nz/act/public/2023/0010/latest/096be8ed81f4efea.pdf",
        ),
        act_title=_env_str("ACT_TITLE", "Civil Aviation Act 2023"),
        act_referer=_env_str(
            "ACT_REFERER",
            "https://www.legislation.govt.nz/act/public/2023/0010/latest/whole.html",
        ),
        act_pdf_path=_env_str(
            "ACT_PDF_PATH", os.path.join(data_root, "download", "caa", "CAA_2023_0010.pdf")
        ),
        act_md_path=_env_str(
            "ACT_MD_PATH", os.path.join(data_root, "md", "caa", "CAA_2023_0010.md")
        ),
        openai_model=_env_str("OPENAI_MODEL", "gpt-4.1"),
        max_output_tokens=_env_int("MAX_OUTPUT_TOKENS", 32000),
        temperature=_env_float("TEMPERATURE", None),
    )

    logging.getLogger("config").info(
        "Loaded settings service=%s data_root=%s manifest=%s pdf_dir=%s md_dir=%s workers=%s",
        service_name, data_root, manifest_path, pdf_dir, md_dir, fetch_workers,
    )
    return result


# Public singleton
settings = get_settings()
