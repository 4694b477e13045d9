import os
from typing import Dict, Mapping, Optional

DEFAULT_CONFIG = {
    "db": "cronq.db",
    "jobs_table": "cronq_jobs",
    "schedule_table": "cronq_scheduled_jobs",
    "busy_timeout": "30",         # seconds a statement waits on a locked database
    "log_level": "INFO",
    "log_format": "text",         # text | json
}

ALLOWED_CONFIG_KEYS = set(DEFAULT_CONFIG.keys())

ENV_PREFIX = "CRONQ_"


def load_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Return the defaults overlaid with CRONQ_* environment variables,
    e.g. CRONQ_DB=/var/lib/cronq.db or CRONQ_LOG_FORMAT=json.
    """
    env = os.environ if environ is None else environ
    cfg = dict(DEFAULT_CONFIG)
    for key in ALLOWED_CONFIG_KEYS:
        value = env.get(ENV_PREFIX + key.upper())
        if value is not None and value.strip():
            cfg[key] = value.strip()
    return cfg


def busy_timeout(cfg: Mapping[str, str]) -> float:
    try:
        return float(cfg.get("busy_timeout", DEFAULT_CONFIG["busy_timeout"]))
    except ValueError:
        raise ValueError(f"busy_timeout must be a number, got {cfg.get('busy_timeout')!r}")
